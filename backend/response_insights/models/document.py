from sqlalchemy import Column, String, Text, DateTime, func, Enum
from sqlalchemy.orm import relationship

from response_insights.db.session import Base
from response_insights.schemas.document import Sentiment

class Document(Base):
    """
    SQLAlchemy model for the 'documents' table.

    A document is one analyzed piece of free text, typically the answer to a
    single survey question. It belongs to an environment and is immutable
    once created, apart from its processing status and insight links.
    """
    __tablename__ = "documents"

    # The unique identifier for the document.
    id = Column(String, primary_key=True, index=True)

    # The environment (tenant) this document belongs to.
    environmentId = Column(String, nullable=False, index=True)

    # Where the text came from.
    surveyId = Column(String, nullable=True, index=True)
    questionId = Column(String, nullable=True)
    responseId = Column(String, nullable=True, index=True)
    # "<surveyId>-<questionId>", groups the documents answering one question.
    referenceId = Column(String, nullable=True, index=True)

    # The analyzed free text.
    text = Column(Text, nullable=False)

    # Sentiment reported by the extraction LLM.
    sentiment = Column(Enum(Sentiment), nullable=True)

    # Status of insight extraction (e.g., "Pending", "Success", "Failed").
    isProcessed = Column(String, default="Pending", nullable=False)

    createdAt = Column(DateTime(timezone=True), server_default=func.now())
    updatedAt = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    insight_links = relationship("DocumentInsight", back_populates="document", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Document(id={self.id}, environmentId='{self.environmentId}', isProcessed='{self.isProcessed}')>"
