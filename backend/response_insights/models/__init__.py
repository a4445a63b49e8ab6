# Importing every model here registers it with SQLAlchemy's metadata, so
# relationships resolve and `Base.metadata.create_all` sees all tables.

from .document import Document
from .insight import Insight
from .document_insight import DocumentInsight
