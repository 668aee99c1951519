"""
CampaignScheduleRepository - Data access layer for CampaignSchedule entities
"""

from datetime import datetime
from typing import List
from sqlalchemy import asc
from repositories.base_repository import BaseRepository
from utils.datetime_utils import ensure_utc
from autopilot_database import CampaignSchedule
import logging

logger = logging.getLogger(__name__)


class CampaignScheduleRepository(BaseRepository[CampaignSchedule]):
    """Repository for CampaignSchedule data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, CampaignSchedule)

    def get_due_schedules(self, now: datetime) -> List[CampaignSchedule]:
        """
        Get pending schedules whose time has come, oldest first.

        Args:
            now: Reference time (aware UTC)

        Returns:
            List of schedules with status 'scheduled' and scheduled_time <= now
        """
        return (
            self.session.query(CampaignSchedule)
            .filter(CampaignSchedule.status == 'scheduled')
            .filter(CampaignSchedule.scheduled_time <= ensure_utc(now).replace(tzinfo=None))
            .order_by(asc(CampaignSchedule.scheduled_time))
            .all()
        )

    def get_pending(self) -> List[CampaignSchedule]:
        """All schedules still waiting to run."""
        return (
            self.session.query(CampaignSchedule)
            .filter(CampaignSchedule.status == 'scheduled')
            .order_by(asc(CampaignSchedule.scheduled_time))
            .all()
        )

    def count_pending(self) -> int:
        return self.count(status='scheduled')
