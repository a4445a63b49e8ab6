import logging
from fastapi import APIRouter, Depends, HTTPException, status, Path
from sqlalchemy.orm import Session

# Configure logger for this module
logger = logging.getLogger(__name__)

# Import services, schemas, and dependencies
from response_insights.core.deps import require_ai_insights
from response_insights.core.errors import ConflictError, NotFoundError, ProviderError
from response_insights.db.session import get_db
from response_insights.schemas.document import DocumentCreate, DocumentInDB
from response_insights.schemas.insight import InsightCandidate, InsightResolution
from response_insights.services.document_service import DocumentService, get_document_service
from response_insights.services.insight_resolver import InsightResolver, get_insight_resolver

# Create a new router for this module.
router = APIRouter()

@router.post(
    "/{environment_id}/documents",
    response_model=DocumentInDB,
    status_code=status.HTTP_201_CREATED,
    summary="Analyze a survey response",
    description="Stores the free text of a response as a document, extracts its sentiment and candidate insights with the LLM, and merges each candidate into an existing insight of the environment or creates a new one.",
    dependencies=[Depends(require_ai_insights)]
)
def process_response(
    *,
    db: Session = Depends(get_db),
    environment_id: str = Path(..., description="The environment the response belongs to."),
    document_in: DocumentCreate,
    document_service: DocumentService = Depends(get_document_service)
):
    """
    Analyze a survey response and resolve its insights.

    Args:
        db (Session): Database session dependency.
        environment_id (str): The environment of the response.
        document_in (DocumentCreate): The response text and its survey references.
        document_service (DocumentService): Dependency for document processing.

    Raises:
        HTTPException: 502 Bad Gateway if the LLM or embedding provider fails.
        HTTPException: 500 Internal Server Error for unexpected errors.

    Returns:
        DocumentInDB: The processed document with the ids of its insights.
    """
    logger.debug(f"API: Received response for processing in environment {environment_id}.")
    try:
        return document_service.process_response(db, environment_id, document_in)
    except ProviderError as e:
        logger.error(f"API: Provider failure while processing response: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Upstream AI provider error: {e}")
    except Exception as e:
        logger.error(f"API: An unexpected error occurred while processing response: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"An unexpected error occurred while processing the response: {e}"
        )

@router.post(
    "/{environment_id}/documents/{document_id}/reprocess",
    response_model=DocumentInDB,
    summary="Reprocess a document",
    description="Re-runs insight extraction and resolution for a stored document, e.g. after a failed attempt. Existing insight links are kept.",
    dependencies=[Depends(require_ai_insights)]
)
def reprocess_document(
    *,
    db: Session = Depends(get_db),
    environment_id: str = Path(..., description="The environment of the document."),
    document_id: str = Path(..., description="The document to reprocess."),
    document_service: DocumentService = Depends(get_document_service)
):
    logger.debug(f"API: Reprocessing document {document_id} in environment {environment_id}.")
    try:
        return document_service.reprocess_document(db, environment_id, document_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProviderError as e:
        logger.error(f"API: Provider failure while reprocessing document {document_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Upstream AI provider error: {e}")
    except Exception as e:
        logger.error(f"API: An unexpected error occurred while reprocessing document {document_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"An unexpected error occurred while reprocessing the document: {e}"
        )

@router.post(
    "/{environment_id}/documents/{document_id}/insights",
    response_model=InsightResolution,
    summary="Resolve a candidate insight for a document",
    description="Reconciles an externally extracted candidate insight with the environment's insights. The document is linked to the nearest existing insight within the merge distance, or to a newly created one.",
    dependencies=[Depends(require_ai_insights)]
)
def resolve_insight(
    *,
    db: Session = Depends(get_db),
    environment_id: str = Path(..., description="The environment of the document."),
    document_id: str = Path(..., description="The document the candidate was extracted from."),
    candidate: InsightCandidate,
    resolver: InsightResolver = Depends(get_insight_resolver)
):
    """
    Merge or create the insight for a candidate.

    Raises:
        HTTPException: 404 Not Found if the document does not exist in the environment.
        HTTPException: 409 Conflict if the generated insight id collides.
        HTTPException: 502 Bad Gateway if the embedding provider fails.

    Returns:
        InsightResolution: The resulting insight id and whether it was created.
    """
    logger.debug(f"API: Resolving candidate '{candidate.title}' for document {document_id}.")
    try:
        return resolver.resolve_insight(db, environment_id, document_id, candidate)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ProviderError as e:
        logger.error(f"API: Embedding failure for document {document_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Upstream embedding provider error: {e}")
    except Exception as e:
        logger.error(f"API: An unexpected error occurred during insight resolution: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"An unexpected error occurred during insight resolution: {e}"
        )
