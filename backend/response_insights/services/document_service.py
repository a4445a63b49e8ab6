import uuid
import json
import logging
from typing import Optional, List, Tuple

from sqlalchemy.orm import Session

from response_insights.core.cache import TagCache, get_cache, document_tag_by_insight_id, document_tag_by_environment_id
from response_insights.core.errors import NotFoundError, ProviderError
from response_insights.core.llm import LLMManager
from response_insights.models.document import Document
from response_insights.schemas.document import DocumentCreate, DocumentInDB, ProcessingStatus, Sentiment
from response_insights.schemas.insight import InsightCandidate
from response_insights.services.insight_resolver import InsightResolver, get_insight_resolver
from response_insights.services.insights_service import document_to_schema

# Configure logger for this module
logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You analyze free-text answers to survey questions. Return a JSON object with two fields:
- "sentiment": one of "positive", "negative", "neutral".
- "insights": an array of the distinct topics the answer raises. Each item has
  - "title": a short label (at most 6 words),
  - "description": one sentence explaining the topic,
  - "category": one of "featureRequest", "complaint", "praise", "other".
Return an empty "insights" array if the answer raises no concrete topic. Output only the JSON object.
"""


def get_question_response_reference_id(survey_id: str, question_id: str) -> str:
    return f"{survey_id}-{question_id}"


class DocumentService:
    """
    Turns survey responses into documents and reconciles the insights
    extracted from them.

    The LLM proposes a sentiment and candidate insights for the text; each
    candidate then goes through the insight resolver, which merges it into
    an existing insight or creates a new one.
    """
    def __init__(
        self,
        llm_manager: Optional[LLMManager] = None,
        resolver: Optional[InsightResolver] = None,
        cache: Optional[TagCache] = None
    ):
        self.llm_manager = llm_manager
        self._resolver = resolver
        self.cache = cache or get_cache()
        if self.llm_manager is None:
            try:
                self.llm_manager = LLMManager.from_settings()
                logger.info("DocumentService: LLMManager initialized successfully.")
            except Exception as e:
                logger.critical(f"DocumentService: LLM Manager failed to initialize: {e}", exc_info=True)

    @property
    def resolver(self) -> InsightResolver:
        if self._resolver is None:
            self._resolver = get_insight_resolver()
        return self._resolver

    def _extract_json_from_markdown(self, text: str) -> str:
        """
        Extracts JSON string from a markdown code block, or returns the text unchanged.
        """
        stripped = text.strip()
        if stripped.startswith("```") and stripped.endswith("```"):
            body = stripped[3:-3].strip()
            if body.startswith("json"):
                body = body[len("json"):]
            return body.strip()
        return stripped

    def extract_insights(self, text: str) -> Tuple[Optional[Sentiment], List[InsightCandidate]]:
        """
        Asks the LLM for the sentiment and candidate insights of `text`.

        Malformed insight items are skipped. A response that is not a JSON
        object at all is treated as a provider failure.

        Raises:
            ProviderError: If the LLM is unavailable, fails, or returns unusable output.
        """
        if not self.llm_manager:
            raise ProviderError("LLM service is not available.")

        messages = [
            {"role": "system", "content": EXTRACTION_PROMPT},
            {"role": "user", "content": f"Answer:\n\n---\n\n{text[:8000]}\n\n---"}
        ]
        raw = self.llm_manager.get_response(messages)
        logger.debug(f"DocumentService: LLM extraction response (first 200 chars): {raw[:200]}")

        try:
            data = json.loads(self._extract_json_from_markdown(raw))
        except json.JSONDecodeError as e:
            logger.error(f"DocumentService: LLM returned invalid JSON: {e}")
            raise ProviderError(f"LLM returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError("LLM response was not a JSON object.")

        sentiment = None
        raw_sentiment = data.get("sentiment")
        if raw_sentiment is not None:
            try:
                sentiment = Sentiment(str(raw_sentiment).lower())
            except ValueError:
                logger.warning(f"DocumentService: Ignoring unknown sentiment '{raw_sentiment}'.")

        raw_insights = data.get("insights") or []
        if not isinstance(raw_insights, list):
            raise ProviderError("LLM 'insights' field was not a list.")

        candidates: List[InsightCandidate] = []
        seen = set()
        for item in raw_insights:
            try:
                candidate = InsightCandidate(**item)
            except Exception as item_e:
                logger.warning(f"DocumentService: Skipping malformed insight item: {item}. Error: {item_e}")
                continue
            key = (candidate.title.lower(), candidate.description.lower())
            if key in seen:
                continue
            seen.add(key)
            candidates.append(candidate)
        return sentiment, candidates

    def get_document(self, db: Session, environment_id: str, document_id: str) -> Document:
        document = db.get(Document, document_id)
        if document is None or document.environmentId != environment_id:
            raise NotFoundError(f"Document {document_id} not found in environment {environment_id}.")
        return document

    def process_response(self, db: Session, environment_id: str, document_in: DocumentCreate) -> DocumentInDB:
        """
        Creates a document from a response's free text and resolves its insights.

        Extraction runs before anything is written, so an LLM failure leaves
        no document behind. A failure while resolving marks the document
        'Failed' and re-raises; it can then be reprocessed.

        Returns:
            DocumentInDB: The processed document with its insight ids.
        """
        logger.info(f"DocumentService: Processing response {document_in.responseId} in environment {environment_id}.")
        sentiment, candidates = self.extract_insights(document_in.text)

        document = Document(
            id=f"doc_{uuid.uuid4().hex}",
            environmentId=environment_id,
            surveyId=document_in.surveyId,
            questionId=document_in.questionId,
            responseId=document_in.responseId,
            text=document_in.text,
            sentiment=sentiment,
            referenceId=(
                get_question_response_reference_id(document_in.surveyId, document_in.questionId)
                if document_in.surveyId and document_in.questionId else None
            ),
            isProcessed=ProcessingStatus.PENDING.value
        )
        db.add(document)
        db.commit()
        db.refresh(document)

        self._resolve_candidates(db, document, candidates)
        return document_to_schema(document)

    def reprocess_document(self, db: Session, environment_id: str, document_id: str) -> DocumentInDB:
        """
        Re-runs extraction and resolution for a stored document. Links that
        already exist are kept as they are.
        """
        document = self.get_document(db, environment_id, document_id)
        logger.info(f"DocumentService: Reprocessing document {document_id}.")
        sentiment, candidates = self.extract_insights(document.text)
        if sentiment is not None:
            document.sentiment = sentiment
        document.isProcessed = ProcessingStatus.PENDING.value
        db.commit()

        self._resolve_candidates(db, document, candidates)
        return document_to_schema(document)

    def _resolve_candidates(self, db: Session, document: Document, candidates: List[InsightCandidate]) -> None:
        try:
            for candidate in candidates:
                self.resolver.resolve_insight(db, document.environmentId, document.id, candidate)
        except Exception as e:
            logger.error(f"DocumentService: Insight resolution failed for document {document.id}: {e}", exc_info=True)
            self._set_status(db, document, ProcessingStatus.FAILED)
            raise
        self._set_status(db, document, ProcessingStatus.SUCCESS)
        logger.info(f"DocumentService: Document {document.id} processed with {len(candidates)} candidate insights.")

    def _set_status(self, db: Session, document: Document, status: ProcessingStatus) -> None:
        document.isProcessed = status.value
        db.commit()
        db.refresh(document)
        tags = [document_tag_by_insight_id(link.insightId) for link in document.insight_links]
        self.cache.revalidate(document_tag_by_environment_id(document.environmentId), *tags)


_document_service: Optional[DocumentService] = None

def get_document_service() -> DocumentService:
    """
    Dependency function to provide the document service instance.
    """
    global _document_service
    if _document_service is None:
        _document_service = DocumentService()
    return _document_service

__all__ = ["DocumentService", "get_document_service", "get_question_response_reference_id"]
