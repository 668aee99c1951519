"""
Step executors run individual campaign steps on behalf of the coordinator.

An executor returns a StepOutcome when the step finishes synchronously, or a
concurrent.futures.Future resolving to one when the work continues elsewhere.
"""

import logging
import random
from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union

from services.exceptions import StepExecutionError

logger = logging.getLogger(__name__)

METRIC_FIELDS = ('delivered', 'opened', 'clicked', 'converted', 'revenue')

# Actions that put content in front of the audience and therefore produce metrics
DELIVERY_ACTIONS = {'deploy_campaign', 'launch_paid_ads', 'publish_social_content'}


@dataclass
class StepOutcome:
    success: bool
    metrics: Dict[str, float] = field(default_factory=dict)
    message: str = ''
    error: Optional[str] = None

    @classmethod
    def ok(cls, message: str = '', **metrics) -> 'StepOutcome':
        return cls(success=True, metrics=metrics, message=message)

    @classmethod
    def failed(cls, error: str) -> 'StepOutcome':
        return cls(success=False, error=error)


StepResult = Union[StepOutcome, Future]


class StepExecutor(ABC):
    """Runs one step. Raising StepExecutionError is equivalent to returning a failed outcome."""

    @abstractmethod
    def run(self, step: Dict[str, Any], context: Dict[str, Any]) -> StepResult:
        """
        Execute a single step.

        Args:
            step: Step dict with id, agent_id, action and dependencies
            context: Campaign spec payload plus execution id

        Returns:
            StepOutcome, or a Future resolving to one
        """
        raise NotImplementedError


class SimulatedStepExecutor(StepExecutor):
    """
    Seedable stand-in for the agent fleet.

    Delivery steps synthesize funnel metrics from the audience size; other
    steps complete with no metrics. Actions listed in fail_actions always fail.
    """

    def __init__(self, seed: Optional[int] = None, failure_rate: float = 0.0,
                 fail_actions: Optional[Iterable[str]] = None,
                 average_order_value: float = 300.0):
        self.random = random.Random(seed)
        self.failure_rate = failure_rate
        self.fail_actions = set(fail_actions or [])
        self.average_order_value = average_order_value

    def run(self, step: Dict[str, Any], context: Dict[str, Any]) -> StepOutcome:
        action = step.get('action')
        if action in self.fail_actions or (self.failure_rate and self.random.random() < self.failure_rate):
            raise StepExecutionError(f"Simulated failure in {step.get('agent_id')}:{action}")

        if action not in DELIVERY_ACTIONS:
            return StepOutcome.ok(message=f"Step {step.get('id')} completed successfully")

        audience_size = int(context.get('audience_size') or 1000)
        delivered = int(audience_size * self.random.uniform(0.95, 0.99))
        opened = int(delivered * self.random.uniform(0.18, 0.30))
        clicked = int(opened * self.random.uniform(0.08, 0.15))
        converted = int(clicked * self.random.uniform(0.03, 0.08))
        revenue = round(converted * self.average_order_value, 2)

        logger.debug(f"Simulated {action}: delivered={delivered} opened={opened} converted={converted}")
        return StepOutcome.ok(
            message=f"Step {step.get('id')} completed successfully",
            delivered=delivered,
            opened=opened,
            clicked=clicked,
            converted=converted,
            revenue=revenue
        )
