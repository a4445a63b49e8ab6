from sqlalchemy import Column, String, ForeignKey, DateTime, func
from sqlalchemy.orm import relationship

from response_insights.db.session import Base

class DocumentInsight(Base):
    """
    SQLAlchemy model for the 'document_insights' join table.

    Records that a document contributed to an insight. The composite primary
    key allows at most one row per (document, insight) pair.
    """
    __tablename__ = "document_insights"

    documentId = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True)
    insightId = Column(String, ForeignKey("insights.id", ondelete="CASCADE"), primary_key=True, index=True)
    createdAt = Column(DateTime(timezone=True), server_default=func.now())

    document = relationship("Document", back_populates="insight_links")
    insight = relationship("Insight", back_populates="document_links")
