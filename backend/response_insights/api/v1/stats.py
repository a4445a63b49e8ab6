import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, Path
from sqlalchemy.orm import Session

from response_insights.db.session import get_db
from response_insights.schemas.stats import EnvironmentStats
from response_insights.services.stats_service import StatsService, get_stats_service

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get(
    "/{environment_id}/stats",
    response_model=EnvironmentStats,
    summary="Response and sentiment statistics for an environment"
)
def get_stats(
    *,
    db: Session = Depends(get_db),
    environment_id: str = Path(..., description="The environment to summarize."),
    statsFrom: Optional[datetime] = Query(None, description="Only count documents created at or after this time."),
    stats_service: StatsService = Depends(get_stats_service)
):
    logger.debug(f"API: Computing stats for environment {environment_id} from {statsFrom}.")
    return stats_service.get_stats(db, environment_id, stats_from=statsFrom)
