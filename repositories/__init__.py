"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository, SortOrder
from .timing_insight_repository import TimingInsightRepository
from .campaign_schedule_repository import CampaignScheduleRepository
from .campaign_execution_repository import CampaignExecutionRepository
from .replay_execution_repository import ReplayExecutionRepository
from .campaign_pattern_repository import CampaignPatternRepository
from .memory_repository import MemoryRepository

__all__ = [
    'BaseRepository',
    'SortOrder',
    'TimingInsightRepository',
    'CampaignScheduleRepository',
    'CampaignExecutionRepository',
    'ReplayExecutionRepository',
    'CampaignPatternRepository',
    'MemoryRepository'
]
