import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.orm import Session

# Configure logger for this module
logger = logging.getLogger(__name__)

# Import services, schemas, and dependencies
from response_insights.core.errors import NotFoundError
from response_insights.db.session import get_db
from response_insights.schemas.document import DocumentInDB
from response_insights.schemas.insight import InsightInDB, InsightList
from response_insights.services.insights_service import InsightService, get_insight_service

# Create a new router for this module.
router = APIRouter()

@router.get(
    "/{environment_id}/insights",
    response_model=InsightList,
    summary="List the insights of an environment",
    description="Returns the environment's insights, newest first, with the number of documents linked to each."
)
def get_insights(
    *,
    db: Session = Depends(get_db),
    environment_id: str = Path(..., description="The environment whose insights to list."),
    limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum number of insights."),
    offset: Optional[int] = Query(None, ge=0, description="Number of insights to skip."),
    insight_service: InsightService = Depends(get_insight_service)
):
    logger.debug(f"API: Listing insights for environment {environment_id} (limit={limit}, offset={offset}).")
    insights = insight_service.get_insights(db, environment_id, limit=limit, offset=offset)
    return InsightList(insights=insights, limit=limit, offset=offset)

@router.get(
    "/{environment_id}/insights/{insight_id}",
    response_model=InsightInDB,
    summary="Retrieve a single insight by ID",
    description="Fetches a single insight's details. Returns a 404 error if the insight is not found in the environment."
)
def get_insight_by_id(
    *,
    db: Session = Depends(get_db),
    environment_id: str = Path(..., description="The environment of the insight."),
    insight_id: str = Path(..., description="The unique identifier of the insight to retrieve."),
    insight_service: InsightService = Depends(get_insight_service)
):
    """
    Retrieve a single insight by its ID.

    Raises:
        HTTPException: 404 Not Found if the insight does not exist.

    Returns:
        InsightInDB: The requested insight's details.
    """
    logger.debug(f"API: Attempting to retrieve insight with ID: {insight_id}")
    try:
        return insight_service.get_insight(db, environment_id, insight_id)
    except NotFoundError as e:
        logger.warning(f"API: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insight not found")

@router.get(
    "/{environment_id}/insights/{insight_id}/documents",
    response_model=List[DocumentInDB],
    summary="List the documents linked to an insight"
)
def get_insight_documents(
    *,
    db: Session = Depends(get_db),
    environment_id: str = Path(..., description="The environment of the insight."),
    insight_id: str = Path(..., description="The insight whose documents to list."),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: Optional[int] = Query(None, ge=0),
    insight_service: InsightService = Depends(get_insight_service)
):
    try:
        return insight_service.get_documents_by_insight(db, environment_id, insight_id, limit=limit, offset=offset)
    except NotFoundError as e:
        logger.warning(f"API: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Insight not found")
