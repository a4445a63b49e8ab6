from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum

class InsightCategory(str, Enum):
    FEATURE_REQUEST = "featureRequest"
    COMPLAINT = "complaint"
    PRAISE = "praise"
    OTHER = "other"

class InsightCandidate(BaseModel):
    """
    A candidate insight proposed by upstream extraction, not yet reconciled
    with the environment's existing insights.
    """
    title: str = Field(..., min_length=1, max_length=255, description="Short label for the insight.")
    description: str = Field(..., min_length=1, description="Explanatory text for the insight.")
    category: InsightCategory = Field(..., description="The category of the insight.")

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

class InsightInDB(BaseModel):
    """
    Pydantic model representing an insight as stored in the database.
    The embedding vector is internal and never serialized.
    """
    id: str = Field(..., description="The unique identifier for the insight.")
    environmentId: str = Field(..., description="The environment (tenant) the insight belongs to.")
    title: str
    description: str
    category: InsightCategory
    createdAt: datetime
    updatedAt: Optional[datetime] = None
    documentCount: int = Field(0, description="Number of documents linked to this insight.")

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "insight_abc123",
                "environmentId": "env_1",
                "title": "Slow checkout",
                "description": "Users report checkout is slow",
                "category": "complaint",
                "createdAt": "2025-01-01T12:00:00",
                "updatedAt": "2025-01-01T12:00:00",
                "documentCount": 3
            }
        }
    )

class InsightList(BaseModel):
    insights: List[InsightInDB]
    limit: Optional[int] = None
    offset: Optional[int] = None

class InsightResolution(BaseModel):
    """Outcome of reconciling one candidate with the environment's insights."""
    insightId: str
    documentId: str
    created: bool = Field(..., description="True if a new insight was created, False if merged into an existing one.")
    distance: Optional[float] = Field(None, description="Cosine distance to the matched insight when merged.")
