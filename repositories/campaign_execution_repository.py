"""
CampaignExecutionRepository - Data access layer for CampaignExecution entities
"""

from typing import List
from repositories.base_repository import BaseRepository
from autopilot_database import CampaignExecution
import logging

logger = logging.getLogger(__name__)


class CampaignExecutionRepository(BaseRepository[CampaignExecution]):
    """Repository for CampaignExecution data access"""

    def __init__(self, session):
        """Initialize repository with database session"""
        super().__init__(session, CampaignExecution)

    def get_running(self) -> List[CampaignExecution]:
        """Executions currently in the running state."""
        return self.find_by(status='running')

    def count_running(self) -> int:
        """Number of running executions, used as the capacity counter."""
        return self.count(status='running')
