"""
ReplayExecutionRepository - Data access layer for ReplayExecution entities
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import desc
from repositories.base_repository import BaseRepository
from utils.datetime_utils import ensure_utc
from autopilot_database import ReplayExecution
import logging

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ['queued', 'running']


class ReplayExecutionRepository(BaseRepository[ReplayExecution]):
    """Repository for ReplayExecution data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, ReplayExecution)

    def get_active(self) -> List[ReplayExecution]:
        """Replays that are queued or running."""
        return self.find_by(status=ACTIVE_STATUSES)

    def count_active(self) -> int:
        return self.count(status=ACTIVE_STATUSES)

    def get_latest_for_pattern(self, pattern_id: str) -> Optional[ReplayExecution]:
        """Most recently created replay of a pattern, regardless of status."""
        return (
            self.session.query(ReplayExecution)
            .filter(ReplayExecution.pattern_id == pattern_id)
            .order_by(desc(ReplayExecution.created_at), desc(ReplayExecution.id))
            .first()
        )

    def get_since(self, since: datetime) -> List[ReplayExecution]:
        """Replays created at or after `since`."""
        return (
            self.session.query(ReplayExecution)
            .filter(ReplayExecution.created_at >= ensure_utc(since).replace(tzinfo=None))
            .order_by(desc(ReplayExecution.created_at))
            .all()
        )
