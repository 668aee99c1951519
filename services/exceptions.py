"""
Exception taxonomy for the campaign autopilot services
"""

from typing import List, Optional


class AutopilotError(Exception):
    """Base class for autopilot service errors"""
    pass


class ValidationError(AutopilotError):
    """Raised when a campaign spec is rejected before any state is created"""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None,
                 recommendations: Optional[List[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        self.recommendations = list(recommendations or [])
        super().__init__(f"Validation failed: {'; '.join(self.errors)}")


class CapacityExceededError(AutopilotError):
    """Raised when a launch would exceed the concurrency cap. Retryable."""

    def __init__(self, active: int, limit: int):
        self.active = active
        self.limit = limit
        super().__init__(f"Capacity exceeded: {active}/{limit} executions running")


class StepExecutionError(AutopilotError):
    """Raised by step executors when a single campaign step fails"""
    pass


class ExecutionTimeoutError(AutopilotError):
    """An execution or replay ran past its hard ceiling"""
    pass


class CollaboratorError(AutopilotError):
    """A content, brand, plan or pattern-store collaborator failed or timed out"""
    pass


class NotFoundError(AutopilotError):
    """Requested pattern, schedule or execution does not exist"""
    pass
