"""
TimingInsightRepository - Data access layer for TimingInsight entities
"""

from typing import List, Optional
from sqlalchemy import desc
from repositories.base_repository import BaseRepository
from autopilot_database import TimingInsight
import logging

logger = logging.getLogger(__name__)


class TimingInsightRepository(BaseRepository[TimingInsight]):
    """Repository for TimingInsight data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, TimingInsight)

    def find_matching(self, segment: str, content_type: str,
                      day_of_week: int, hour: int, timezone: str = 'UTC') -> Optional[TimingInsight]:
        """
        Find the insight for an exact (segment, content type, weekday, hour, timezone) slot.

        The weekday and hour are local to `timezone`, so the same local hour in
        two timezones is two different slots.

        Returns:
            Matching insight or None
        """
        return self.find_one_by(
            audience_segment=segment,
            content_type=content_type,
            day_of_week=day_of_week,
            hour=hour,
            timezone=timezone
        )

    def get_top_insights(self, segment: str, content_type: str,
                         min_confidence: float = 0.0) -> List[TimingInsight]:
        """
        Get insights at or above a confidence floor, best converting first.

        Ties on conversion rate are broken by the larger sample size.
        """
        return (
            self.session.query(TimingInsight)
            .filter(TimingInsight.audience_segment == segment)
            .filter(TimingInsight.content_type == content_type)
            .filter(TimingInsight.confidence >= min_confidence)
            .order_by(desc(TimingInsight.conversion_rate), desc(TimingInsight.sample_size))
            .all()
        )

    def get_segments(self) -> List[str]:
        """Distinct audience segments with stored insights."""
        rows = self.session.query(TimingInsight.audience_segment).distinct().all()
        return [row[0] for row in rows]
