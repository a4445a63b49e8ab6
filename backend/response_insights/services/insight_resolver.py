"""
Merge-or-create reconciliation of candidate insights.

A candidate extracted from a document is embedded and compared with the
insights already present in the same environment. If the nearest one lies
within the merge distance, the document is linked to it. Otherwise a new
insight is created from the candidate and the document is linked to that.
Existing insights are never modified by a merge.

Without per-environment serialization, two concurrent calls for the same
environment can both miss and create two insights for one topic.
"""
import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Dict, Optional

from sqlalchemy.orm import Session

from response_insights.core.cache import (
    TagCache,
    get_cache,
    document_tag_by_insight_id,
    insight_tag_by_id,
    insight_tag_by_environment_id,
)
from response_insights.core.config import settings
from response_insights.core.embeddings import EmbeddingManager, get_insight_vector_text
from response_insights.schemas.insight import InsightCandidate, InsightResolution
from response_insights.services.insights_service import InsightService, get_insight_service

logger = logging.getLogger(__name__)


class EnvironmentLocks:
    """One lock per environment id, created on demand."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, environment_id: str):
        with self._guard:
            lock = self._locks.setdefault(environment_id, threading.Lock())
        with lock:
            yield


class InsightResolver:
    """
    Decides, for each candidate insight, whether it duplicates an existing
    insight of the environment (merge) or is novel (create).
    """

    def __init__(
        self,
        embedding_manager: EmbeddingManager,
        insight_service: InsightService,
        cache: Optional[TagCache] = None,
        max_distance: float = 0.35,
        serialize_per_environment: bool = False
    ):
        if max_distance < 0:
            raise ValueError("max_distance must not be negative.")
        self.embedding_manager = embedding_manager
        self.insight_service = insight_service
        self.cache = cache or insight_service.cache
        self.max_distance = max_distance
        self._locks = EnvironmentLocks() if serialize_per_environment else None

    def _guard(self, environment_id: str):
        if self._locks is None:
            return nullcontext()
        return self._locks.hold(environment_id)

    def resolve_insight(
        self,
        db: Session,
        environment_id: str,
        document_id: str,
        candidate: InsightCandidate
    ) -> InsightResolution:
        """
        Links `document_id` to the insight `candidate` belongs to, creating
        that insight when no existing one is close enough.

        Either the link alone, or the new insight together with its link, is
        committed. On any failure nothing from this call is left in the
        database and the error propagates.

        Args:
            db (Session): The SQLAlchemy database session.
            environment_id (str): The environment of the document.
            document_id (str): The document the candidate was extracted from.
            candidate (InsightCandidate): Title, description and category.

        Returns:
            InsightResolution: The resulting insight id and whether it was created.

        Raises:
            ProviderError: If the embedding could not be computed.
            NotFoundError: If the document does not exist in the environment.
            ConflictError: If the generated insight id collides.
        """
        vector_text = get_insight_vector_text(candidate.title, candidate.description)
        logger.debug(f"InsightResolver: Embedding candidate for document {document_id}: '{vector_text[:80]}'")
        vector = self.embedding_manager.embed(vector_text)

        with self._guard(environment_id):
            try:
                nearest = self.insight_service.find_nearest_insights(
                    db, environment_id, vector, limit=1, max_distance=self.max_distance
                )
                if nearest:
                    insight, distance = nearest[0]
                    insight_id = insight.id
                    created = False
                    logger.info(
                        f"InsightResolver: Merging document {document_id} into insight {insight_id} "
                        f"(distance {distance:.4f} <= {self.max_distance})."
                    )
                else:
                    distance = None
                    insight = self.insight_service.create_insight(
                        db,
                        environment_id=environment_id,
                        title=candidate.title,
                        description=candidate.description,
                        category=candidate.category,
                        vector=vector,
                        commit=False
                    )
                    insight_id = insight.id
                    created = True
                    logger.info(f"InsightResolver: No insight within {self.max_distance} in {environment_id}; created {insight_id}.")

                self.insight_service.link_document(db, document_id, insight_id, commit=False)
                db.commit()
            except Exception:
                db.rollback()
                logger.error(f"InsightResolver: Resolution failed for document {document_id} in {environment_id}; rolled back.")
                raise

        self.cache.revalidate(
            document_tag_by_insight_id(insight_id),
            insight_tag_by_id(insight_id),
            insight_tag_by_environment_id(environment_id),
        )
        return InsightResolution(insightId=insight_id, documentId=document_id, created=created, distance=distance)


_insight_resolver: Optional[InsightResolver] = None
_resolver_lock = threading.Lock()

def get_insight_resolver() -> InsightResolver:
    """
    Dependency function to provide the insight resolver instance. The
    embedding model is loaded on first use.
    """
    global _insight_resolver
    with _resolver_lock:
        if _insight_resolver is None:
            _insight_resolver = InsightResolver(
                embedding_manager=EmbeddingManager.from_settings(),
                insight_service=get_insight_service(),
                cache=get_cache(),
                max_distance=settings.INSIGHT_MERGE_MAX_DISTANCE,
                serialize_per_environment=settings.INSIGHT_SERIALIZE_PER_ENVIRONMENT
            )
    return _insight_resolver

__all__ = ["InsightResolver", "get_insight_resolver"]
