from sqlalchemy import Column, String, Text, DateTime, func, JSON, Enum
from sqlalchemy.orm import relationship

from response_insights.db.session import Base
from response_insights.schemas.insight import InsightCategory

class Insight(Base):
    """
    SQLAlchemy model for the 'insights' table.

    An insight is a semantically distinct topic extracted from the documents
    of one environment. Many documents can be linked to one insight through
    the 'document_insights' table.
    """
    __tablename__ = "insights"

    # The unique identifier for the insight.
    id = Column(String, primary_key=True, index=True)

    # The environment (tenant) this insight belongs to. Similarity search
    # never crosses this boundary.
    environmentId = Column(String, nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(Enum(InsightCategory), nullable=False)

    # Embedding of "<title>: <description>", computed once at creation.
    # Stored as a JSON list of floats, e.g. [0.123, -0.98, 0.456, ...]
    vector = Column(JSON, nullable=False)

    createdAt = Column(DateTime(timezone=True), server_default=func.now())
    updatedAt = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    document_links = relationship("DocumentInsight", back_populates="insight", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Insight(id={self.id}, environmentId='{self.environmentId}', title='{self.title}')>"
