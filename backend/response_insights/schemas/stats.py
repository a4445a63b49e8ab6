from pydantic import BaseModel
from typing import Optional, Literal

class EnvironmentStats(BaseModel):
    newResponses: int = 0
    activeSurveys: int = 0
    analysedFeedbacks: int = 0
    sentimentScore: float = 0.0
    overallSentiment: Optional[Literal["positive", "negative"]] = None
