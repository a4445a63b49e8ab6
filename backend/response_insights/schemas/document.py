from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from enum import Enum

class ProcessingStatus(str, Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"

class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"

class DocumentCreate(BaseModel):
    surveyId: Optional[str] = Field(None, description="The survey the response belongs to.")
    questionId: Optional[str] = Field(None, description="The question that was answered.")
    responseId: Optional[str] = Field(None, description="The response the free text comes from.")
    text: str = Field(..., min_length=1, description="The free-text answer to analyze.")

class DocumentInDB(BaseModel):
    id: str = Field(..., description="The unique identifier for the document.")
    environmentId: str
    surveyId: Optional[str] = None
    questionId: Optional[str] = None
    responseId: Optional[str] = None
    referenceId: Optional[str] = None
    text: str
    sentiment: Optional[Sentiment] = None
    isProcessed: ProcessingStatus = Field(ProcessingStatus.PENDING, description="Status of insight extraction for the document.")
    createdAt: datetime
    updatedAt: Optional[datetime] = None
    insightIds: List[str] = Field(default_factory=list, description="Insights this document contributed to.")

    model_config = ConfigDict(from_attributes=True)
