import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, distinct
from sqlalchemy.orm import Session

from response_insights.core.cache import TagCache, get_cache, document_tag_by_environment_id
from response_insights.models.document import Document
from response_insights.schemas.document import Sentiment
from response_insights.schemas.stats import EnvironmentStats

# Configure logger for this module
logger = logging.getLogger(__name__)

class StatsService:
    """
    Aggregates the analyzed responses of an environment.
    """
    def __init__(self, cache: Optional[TagCache] = None):
        self._cache = cache

    @property
    def cache(self) -> TagCache:
        if self._cache is None:
            self._cache = get_cache()
        return self._cache

    def get_stats(self, db: Session, environment_id: str, stats_from: Optional[datetime] = None) -> EnvironmentStats:
        """
        Response and sentiment figures for an environment, optionally limited
        to documents created at or after `stats_from`.

        `sentimentScore` is the larger of the positive and negative shares,
        computed over positive and negative documents only. Neutral documents
        count as analysed but do not move the score.
        """
        def load():
            filters = [Document.environmentId == environment_id]
            if stats_from is not None:
                filters.append(Document.createdAt >= stats_from)

            new_responses, active_surveys = (
                db.query(func.count(distinct(Document.responseId)), func.count(distinct(Document.surveyId)))
                .filter(*filters)
                .one()
            )
            sentiment_counts = {sentiment: 0 for sentiment in Sentiment}
            grouped = (
                db.query(Document.sentiment, func.count(Document.id))
                .filter(*filters, Document.sentiment.isnot(None))
                .group_by(Document.sentiment)
                .all()
            )
            for sentiment, count in grouped:
                sentiment_counts[Sentiment(sentiment)] = count

            # analysed feedbacks is the sum of all the sentiments
            analysed_feedbacks = sum(sentiment_counts.values())
            positive = sentiment_counts[Sentiment.POSITIVE]
            negative = sentiment_counts[Sentiment.NEGATIVE]

            positive_share = negative_share = 0.0
            overall_sentiment = None
            if positive or negative:
                positive_share = positive / (positive + negative)
                negative_share = negative / (positive + negative)
                overall_sentiment = "positive" if positive_share >= negative_share else "negative"

            stats = EnvironmentStats(
                newResponses=new_responses,
                activeSurveys=active_surveys,
                analysedFeedbacks=analysed_feedbacks,
                sentimentScore=max(positive_share, negative_share),
                overallSentiment=overall_sentiment
            )
            logger.debug(f"StatsService: Stats for {environment_id}: {stats}")
            return stats.model_dump(mode="json")

        key = f"stats-{environment_id}-{stats_from.isoformat() if stats_from else 'all'}"
        return EnvironmentStats.model_validate(
            self.cache.get_or_set(key, [document_tag_by_environment_id(environment_id)], load)
        )


_stats_service: Optional[StatsService] = None

def get_stats_service() -> StatsService:
    """
    Dependency function to provide the stats service instance.
    """
    global _stats_service
    if _stats_service is None:
        _stats_service = StatsService()
    return _stats_service
