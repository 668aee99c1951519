"""
Service layer enums
These enums mirror the string values stored on the models
so services can compare statuses without importing database models
"""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Lifecycle of a campaign execution"""
    SCHEDULED = 'scheduled'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class ScheduleStatus(str, Enum):
    """Lifecycle of a campaign schedule"""
    SCHEDULED = 'scheduled'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class ReplayStatus(str, Enum):
    """Lifecycle of a pattern replay"""
    QUEUED = 'queued'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class StepStatus(str, Enum):
    """Status of a single execution step"""
    PENDING = 'pending'
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class Urgency(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    IMMEDIATE = 'immediate'


class SlotPriority(str, Enum):
    """Tier of a recommended schedule slot"""
    PRIMARY = 'primary'
    SECONDARY = 'secondary'
    FALLBACK = 'fallback'


class SchedulePriority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'

    @property
    def rank(self) -> int:
        """Higher rank is admitted first"""
        return {'low': 0, 'medium': 1, 'high': 2, 'critical': 3}[self.value]


class RecurrenceInterval(str, Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'


class ModificationType(str, Enum):
    """Kinds of change a replay can apply to a pattern"""
    CONTENT = 'content'
    TIMING = 'timing'
    AUDIENCE = 'audience'
    BUDGET = 'budget'
    AGENT_SEQUENCE = 'agent_sequence'


class FailurePolicy(str, Enum):
    """How a failed step affects the overall execution"""
    BEST_EFFORT = 'best_effort'
    ABORT_ON_CRITICAL = 'abort_on_critical'
