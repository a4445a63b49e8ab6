# Pydantic schemas exposed by the API.

from .document import DocumentInDB as DocumentSchema
from .insight import InsightInDB as InsightSchema
from .stats import EnvironmentStats as StatsSchema
