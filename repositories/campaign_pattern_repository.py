"""
CampaignPatternRepository - Read-only access to scored historical patterns
"""

from typing import List
from sqlalchemy import desc
from repositories.base_repository import BaseRepository
from autopilot_database import CampaignPattern
import logging

logger = logging.getLogger(__name__)


class CampaignPatternRepository(BaseRepository[CampaignPattern]):
    """Pattern store used by the replay engine"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, CampaignPattern)

    def get_patterns_by_score(self, min_score: float) -> List[CampaignPattern]:
        """
        Get patterns scoring at or above min_score, best first.

        Args:
            min_score: Minimum pattern score (0-100)

        Returns:
            List of patterns ordered by score descending
        """
        return (
            self.session.query(CampaignPattern)
            .filter(CampaignPattern.pattern_score >= min_score)
            .order_by(desc(CampaignPattern.pattern_score))
            .all()
        )
