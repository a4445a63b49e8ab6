import uuid
import logging
from typing import Optional, List, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from response_insights.core.cache import (
    TagCache,
    get_cache,
    document_tag_by_insight_id,
    insight_tag_by_id,
    insight_tag_by_environment_id,
)
from response_insights.core.errors import ConflictError, NotFoundError
from response_insights.core.similarity import cosine_distances_to
from response_insights.models.document import Document
from response_insights.models.document_insight import DocumentInsight
from response_insights.models.insight import Insight as InsightModel
from response_insights.schemas.document import DocumentInDB
from response_insights.schemas.insight import InsightCategory, InsightInDB

# Configure logger for this module
logger = logging.getLogger(__name__)

class InsightService:
    """
    Persistence and lookup for insights.

    Holds the insights of every environment together with their embedding
    vectors, answers nearest-neighbour queries scoped to one environment,
    and records which documents contributed to which insight.
    """
    def __init__(self, cache: Optional[TagCache] = None):
        self._cache = cache

    @property
    def cache(self) -> TagCache:
        if self._cache is None:
            self._cache = get_cache()
        return self._cache

    def find_nearest_insights(
        self,
        db: Session,
        environment_id: str,
        vector: Sequence[float],
        limit: int = 1,
        max_distance: float = 0.35
    ) -> List[Tuple[InsightModel, float]]:
        """
        Finds the insights of an environment closest to `vector`.

        Args:
            db (Session): The SQLAlchemy database session.
            environment_id (str): Only insights of this environment are considered.
            vector (Sequence[float]): The query embedding.
            limit (int): Maximum number of results.
            max_distance (float): Largest cosine distance a result may have.

        Returns:
            List[Tuple[InsightModel, float]]: (insight, cosine distance) pairs,
            ascending by distance. Ties keep creation order.

        Raises:
            ValueError: If `limit`, `max_distance` or `vector` is invalid.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1.")
        if max_distance < 0:
            raise ValueError("max_distance must not be negative.")
        if not vector:
            raise ValueError("vector must not be empty.")

        # Tenant restriction happens in the query, before any distance is computed.
        insights = (
            db.query(InsightModel)
            .filter(InsightModel.environmentId == environment_id)
            .order_by(InsightModel.createdAt.asc(), InsightModel.id.asc())
            .all()
        )
        if not insights:
            logger.debug(f"InsightService: No insights in environment {environment_id}.")
            return []

        candidates = []
        for insight in insights:
            if not insight.vector or len(insight.vector) != len(vector):
                logger.warning(
                    f"InsightService: Skipping insight {insight.id}; stored vector has "
                    f"{len(insight.vector or [])} dimensions, query has {len(vector)}."
                )
                continue
            candidates.append(insight)
        if not candidates:
            return []

        distances = cosine_distances_to(vector, [insight.vector for insight in candidates])
        ranked = sorted(range(len(candidates)), key=lambda i: distances[i])
        results = [
            (candidates[i], float(distances[i]))
            for i in ranked
            if distances[i] <= max_distance
        ][:limit]
        logger.debug(
            f"InsightService: Nearest search in {environment_id} over {len(candidates)} insights "
            f"returned {[(insight.id, round(d, 4)) for insight, d in results]}."
        )
        return results

    def create_insight(
        self,
        db: Session,
        environment_id: str,
        title: str,
        description: str,
        category: InsightCategory,
        vector: Sequence[float],
        insight_id: Optional[str] = None,
        commit: bool = True
    ) -> InsightModel:
        """
        Creates and persists a new insight.

        Args:
            db (Session): The SQLAlchemy database session.
            environment_id (str): The environment the insight belongs to.
            title (str): Short label.
            description (str): Explanatory text.
            category (InsightCategory): The insight category.
            vector (Sequence[float]): Embedding of the insight's normalized text.
            insight_id (Optional[str]): Identifier to use. Generated when omitted.
            commit (bool): Commit immediately. When False the row is only
                flushed, so the caller can commit it together with other changes.

        Returns:
            InsightModel: The new insight.

        Raises:
            ConflictError: If the identifier is already taken.
        """
        insight_id = insight_id or f"insight_{uuid.uuid4().hex}"
        if db.get(InsightModel, insight_id) is not None:
            raise ConflictError(f"Insight {insight_id} already exists.")

        db_insight = InsightModel(
            id=insight_id,
            environmentId=environment_id,
            title=title,
            description=description,
            category=InsightCategory(category),
            vector=[float(x) for x in vector]
        )
        db.add(db_insight)
        try:
            if commit:
                db.commit()
                db.refresh(db_insight)
            else:
                db.flush()
        except IntegrityError as e:
            db.rollback()
            raise ConflictError(f"Insight {insight_id} already exists.") from e
        logger.info(f"InsightService: Created insight {insight_id} in environment {environment_id}.")
        return db_insight

    def link_document(
        self,
        db: Session,
        document_id: str,
        insight_id: str,
        commit: bool = True
    ) -> DocumentInsight:
        """
        Records that a document contributed to an insight.

        An existing link is returned unchanged, so linking twice is harmless.

        Raises:
            NotFoundError: If the document or the insight does not exist, or
                the insight belongs to another environment than the document.
        """
        document = db.get(Document, document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found.")
        insight = db.get(InsightModel, insight_id)
        if insight is None or insight.environmentId != document.environmentId:
            raise NotFoundError(f"Insight {insight_id} not found in environment {document.environmentId}.")

        existing = db.get(DocumentInsight, (document_id, insight_id))
        if existing is not None:
            logger.debug(f"InsightService: Document {document_id} already linked to insight {insight_id}.")
            return existing

        link = DocumentInsight(documentId=document_id, insightId=insight_id)
        db.add(link)
        if commit:
            db.commit()
            db.refresh(link)
        else:
            db.flush()
        logger.debug(f"InsightService: Linked document {document_id} to insight {insight_id}.")
        return link

    def _insight_query(self, db: Session):
        return (
            db.query(InsightModel, func.count(DocumentInsight.documentId))
            .outerjoin(DocumentInsight, DocumentInsight.insightId == InsightModel.id)
            .group_by(InsightModel.id)
        )

    @staticmethod
    def _to_schema(insight: InsightModel, document_count: int) -> InsightInDB:
        return InsightInDB.model_validate(insight, from_attributes=True).model_copy(
            update={"documentCount": document_count}
        )

    def get_insights(
        self,
        db: Session,
        environment_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[InsightInDB]:
        """
        Lists the insights of an environment, newest first, with the number
        of documents linked to each.
        """
        def load():
            query = (
                self._insight_query(db)
                .filter(InsightModel.environmentId == environment_id)
                .order_by(InsightModel.createdAt.desc(), InsightModel.id.desc())
            )
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return [self._to_schema(insight, count).model_dump(mode="json") for insight, count in query.all()]

        cached = self.cache.get_or_set(
            f"insights-{environment_id}-{limit}-{offset}",
            [insight_tag_by_environment_id(environment_id)],
            load
        )
        return [InsightInDB.model_validate(item) for item in cached]

    def get_insight(self, db: Session, environment_id: str, insight_id: str) -> InsightInDB:
        """
        Retrieves a single insight.

        Raises:
            NotFoundError: If the insight does not exist in the environment.
        """
        def load():
            row = (
                self._insight_query(db)
                .filter(InsightModel.id == insight_id, InsightModel.environmentId == environment_id)
                .first()
            )
            return self._to_schema(*row).model_dump(mode="json") if row else None

        cached = self.cache.get_or_set(
            f"insight-{environment_id}-{insight_id}",
            [insight_tag_by_id(insight_id), insight_tag_by_environment_id(environment_id)],
            load
        )
        if cached is None:
            raise NotFoundError(f"Insight {insight_id} not found in environment {environment_id}.")
        return InsightInDB.model_validate(cached)

    def get_documents_by_insight(
        self,
        db: Session,
        environment_id: str,
        insight_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[DocumentInDB]:
        """
        Lists the documents linked to an insight, newest first.

        Raises:
            NotFoundError: If the insight does not exist in the environment.
        """
        self.get_insight(db, environment_id, insight_id)

        def load():
            query = (
                db.query(Document)
                .join(DocumentInsight, DocumentInsight.documentId == Document.id)
                .filter(DocumentInsight.insightId == insight_id, Document.environmentId == environment_id)
                .order_by(Document.createdAt.desc(), Document.id.desc())
            )
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return [document_to_schema(document).model_dump(mode="json") for document in query.all()]

        cached = self.cache.get_or_set(
            f"documents-{insight_id}-{limit}-{offset}",
            [document_tag_by_insight_id(insight_id)],
            load
        )
        return [DocumentInDB.model_validate(item) for item in cached]


def document_to_schema(document: Document) -> DocumentInDB:
    return DocumentInDB.model_validate(document, from_attributes=True).model_copy(
        update={"insightIds": [link.insightId for link in document.insight_links]}
    )


_insight_service: Optional[InsightService] = None

def get_insight_service() -> InsightService:
    """
    Dependency function to provide the insight service instance.
    """
    global _insight_service
    if _insight_service is None:
        _insight_service = InsightService()
    return _insight_service

__all__ = ["InsightService", "get_insight_service", "document_to_schema"]
