"""
Campaign Execution Service
Schedules, launches, monitors and recovers campaign executions, and
re-enqueues recurring schedules
"""

import logging
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING

import pytz

from repositories.campaign_execution_repository import CampaignExecutionRepository
from repositories.campaign_schedule_repository import CampaignScheduleRepository
from repositories.memory_repository import MemoryRepository
from services.campaign_templates import get_campaign_template
from services.common.result import Result
from services.enums import (
    ExecutionStatus, ScheduleStatus, StepStatus, SchedulePriority, RecurrenceInterval,
    FailurePolicy, Urgency
)
from services.exceptions import ValidationError, CapacityExceededError, ExecutionTimeoutError
from services.schedule_generator_service import (
    ScheduleGenerator, SchedulingRequest, TargetAudience, SchedulingConstraints
)
from services.step_executor import StepExecutor, StepOutcome, METRIC_FIELDS
from services.timing_knowledge_service import TimingKnowledgeBase, ObservedPerformance
from utils.datetime_utils import utc_now, ensure_utc, add_months

if TYPE_CHECKING:
    from autopilot_database import CampaignExecution, CampaignSchedule

logger = logging.getLogger(__name__)

COORDINATOR_AGENT_ID = 'campaign-coordinator'
CRITICAL_ACTIONS = {'analyze_audience', 'generate_email_content', 'create_social_content', 'deploy_campaign'}

# Health thresholds
LOW_ENGAGEMENT_MIN_DELIVERED = 100
LOW_ENGAGEMENT_OPEN_RATE = 0.1
HIGH_BOUNCE_RATE = 0.3

MIN_BUDGET = 100
MIN_AUDIENCE_DESCRIPTION = 10

CONSTRAINT_TYPES = {
    'business_hours': bool,
    'weekends_allowed': bool,
    'blackout_dates': list,
    'max_sends_per_day': int,
}


@dataclass
class CampaignSpec:
    """Inbound campaign specification"""
    goal: Optional[str]
    channels: List[str]
    target_audience: Optional[str]
    budget: float = 0.0
    tone: Optional[str] = None
    priority: str = 'medium'
    campaign_id: Optional[str] = None
    plan_id: Optional[str] = None
    content_type: str = 'email'
    segments: List[str] = field(default_factory=lambda: ['general'])
    audience_size: int = 1000
    timezone: str = 'UTC'
    urgency: str = 'medium'
    constraints: Optional[Dict[str, Any]] = None
    lead_magnet: Optional[str] = None
    email_list_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CampaignSpec':
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        known.setdefault('goal', None)
        known.setdefault('channels', [])
        known.setdefault('target_audience', None)
        return cls(**known)


@dataclass
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def execution_to_dict(execution: 'CampaignExecution') -> Dict[str, Any]:
    started_at = ensure_utc(execution.started_at)
    completed_at = ensure_utc(execution.completed_at)
    return {
        'id': execution.id,
        'plan_id': execution.plan_id,
        'schedule_id': execution.schedule_id,
        'status': execution.status,
        'progress': execution.progress,
        'metrics': {name: getattr(execution, name) or 0 for name in METRIC_FIELDS},
        'steps': execution.steps or [],
        'activity_log': execution.activity_log or [],
        'health_flags': execution.health_flags or [],
        'error_note': execution.error_note,
        'started_at': started_at.isoformat() if started_at else None,
        'completed_at': completed_at.isoformat() if completed_at else None,
    }


def constraint_errors(constraints: Any) -> List[str]:
    """Problems with a caller-supplied constraints dict, empty when it can build SchedulingConstraints."""
    if constraints is None:
        return []
    if not isinstance(constraints, dict):
        return ['Constraints must be a mapping']

    errors = []
    for key, value in constraints.items():
        expected = CONSTRAINT_TYPES.get(key)
        if expected is None:
            errors.append(f"Unknown scheduling constraint: {key}")
        elif key == 'max_sends_per_day':
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
                errors.append('max_sends_per_day must be a positive integer')
        elif not isinstance(value, expected):
            errors.append(f"Scheduling constraint {key} must be of type {expected.__name__}")
        elif key == 'blackout_dates':
            for blackout in value:
                try:
                    date.fromisoformat(blackout)
                except (TypeError, ValueError):
                    errors.append(f"Blackout date is not an ISO date: {blackout}")
    return errors


def parse_end_date(value: Any) -> Optional[datetime]:
    """
    Recurrence end date from a datetime or an ISO 8601 string.

    Raises:
        ValueError: For anything else
    """
    if value is None or isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value))
    raise ValueError(f"Unsupported end date: {value!r}")


def schedule_to_dict(schedule: 'CampaignSchedule') -> Dict[str, Any]:
    scheduled_time = ensure_utc(schedule.scheduled_time)
    end_date = ensure_utc(schedule.recurrence_end_date)
    return {
        'id': schedule.id,
        'campaign_id': schedule.campaign_id,
        'scheduled_time': scheduled_time.isoformat() if scheduled_time else None,
        'status': schedule.status,
        'priority': schedule.priority,
        'recurrence': {
            'interval': schedule.recurrence_interval,
            'end_date': end_date.isoformat() if end_date else None,
        } if schedule.recurrence_interval else None,
        'execution_id': schedule.execution_id,
        'parent_schedule_id': schedule.parent_schedule_id,
        'warnings': schedule.warnings or [],
    }


class CampaignExecutionCoordinator:
    """
    Periodic-tick state machine over campaign executions.

    scheduled -> running -> completed | failed | cancelled, one direction only.
    Steps run sequentially through the injected StepExecutor; a step that
    returns a pending Future parks the execution until a later tick().
    """

    def __init__(self,
                 schedule_repository: CampaignScheduleRepository,
                 execution_repository: CampaignExecutionRepository,
                 step_executor: StepExecutor,
                 schedule_generator: Optional[ScheduleGenerator] = None,
                 knowledge_base: Optional[TimingKnowledgeBase] = None,
                 memory_repository: Optional[MemoryRepository] = None,
                 max_concurrent_campaigns: int = 5,
                 stuck_threshold_minutes: int = 10,
                 execution_timeout_hours: int = 24,
                 failure_policy: Union[FailurePolicy, str] = FailurePolicy.BEST_EFFORT,
                 clock: Callable[[], datetime] = utc_now):
        self.schedule_repository = schedule_repository
        self.execution_repository = execution_repository
        self.step_executor = step_executor
        self.schedule_generator = schedule_generator
        self.knowledge_base = knowledge_base
        self.memory_repository = memory_repository
        self.max_concurrent_campaigns = max_concurrent_campaigns
        self.stuck_threshold = timedelta(minutes=stuck_threshold_minutes)
        self.execution_timeout = timedelta(hours=execution_timeout_hours)
        self.failure_policy = FailurePolicy(failure_policy)
        self.clock = clock
        self._in_flight: Dict[int, Future] = {}

    # Validation

    def validate(self, spec: Union[CampaignSpec, Dict[str, Any]]) -> ValidationReport:
        """Required fields are errors; template, budget and audience plausibility are warnings."""
        spec = self._coerce(spec)
        report = ValidationReport()

        if not spec.goal:
            report.errors.append('Campaign goal is required')
        if not spec.channels:
            report.errors.append('At least one channel is required')
        if not spec.target_audience:
            report.errors.append('Target audience is required')

        try:
            SchedulePriority(spec.priority)
        except ValueError:
            report.errors.append(f"Unknown priority: {spec.priority}")
        try:
            Urgency(spec.urgency)
        except ValueError:
            report.errors.append(f"Unknown urgency: {spec.urgency}")
        if spec.timezone not in pytz.all_timezones_set:
            report.errors.append(f"Unknown timezone: {spec.timezone}")
        report.errors.extend(constraint_errors(spec.constraints))

        if spec.goal:
            template = get_campaign_template(spec.goal)
            if not template:
                report.warnings.append(f"No template found for goal: {spec.goal}")
            else:
                unsupported = template.unsupported_channels(spec.channels or [])
                if unsupported:
                    report.warnings.append(f"Channels not optimized for this goal: {', '.join(unsupported)}")

        if spec.budget and spec.budget < MIN_BUDGET:
            report.warnings.append('Budget is quite low, consider increasing for better results')
        if spec.target_audience and len(spec.target_audience) < MIN_AUDIENCE_DESCRIPTION:
            report.warnings.append('Target audience description is very brief, consider adding more details')

        if spec.goal == 'lead_generation' and not spec.lead_magnet:
            report.recommendations.append('Consider adding a lead magnet to improve conversion rates')
        if 'email' in (spec.channels or []) and not spec.email_list_size:
            report.recommendations.append('Specify email list size for better campaign planning')
        if not spec.tone:
            report.recommendations.append('Define brand tone for consistent messaging')

        return report

    # Scheduling

    def schedule(self, spec: Union[CampaignSpec, Dict[str, Any]],
                 scheduled_time: Optional[datetime] = None,
                 priority: Optional[str] = None,
                 recurrence: Optional[Dict[str, Any]] = None) -> 'CampaignSchedule':
        """
        Validate and persist a schedule.

        Args:
            spec: Campaign specification
            scheduled_time: Explicit send time; asks the ScheduleGenerator when omitted
            priority: Overrides spec.priority
            recurrence: Optional {'interval': daily|weekly|monthly, 'end_date': datetime}

        Returns:
            The persisted CampaignSchedule

        Raises:
            ValidationError: Before any schedule is created
        """
        spec = self._coerce(spec)
        report = self.validate(spec)

        interval = None
        end_date = None
        if recurrence:
            try:
                interval = RecurrenceInterval(recurrence.get('interval')).value
            except ValueError:
                report.errors.append(f"Unknown recurrence interval: {recurrence.get('interval')}")
            try:
                end_date = parse_end_date(recurrence.get('end_date'))
            except ValueError:
                report.errors.append(f"Invalid recurrence end date: {recurrence.get('end_date')}")

        resolved_priority = priority or spec.priority
        try:
            SchedulePriority(resolved_priority)
        except ValueError:
            report.errors.append(f"Unknown priority: {resolved_priority}")

        if not report.is_valid:
            raise ValidationError(report.errors, report.warnings, report.recommendations)

        campaign_id = spec.campaign_id or f"campaign_{uuid.uuid4().hex[:12]}"
        spec.campaign_id = campaign_id
        if scheduled_time is None:
            scheduled_time = self._recommended_time(spec, campaign_id)

        schedule = self.schedule_repository.create(
            campaign_id=campaign_id,
            scheduled_time=ensure_utc(scheduled_time),
            status=ScheduleStatus.SCHEDULED.value,
            priority=resolved_priority,
            recurrence_interval=interval,
            recurrence_end_date=end_date,
            spec_payload=spec.to_dict(),
            warnings=report.warnings
        )
        self.schedule_repository.commit()
        self._remember(f"campaign:scheduled:{schedule.id}", schedule_to_dict(schedule),
                       ['campaign', 'scheduled', spec.goal])

        logger.info(f"Campaign scheduled: schedule={schedule.id} campaign={campaign_id} "
                    f"time={ensure_utc(scheduled_time).isoformat()} priority={resolved_priority}")
        return schedule

    def _recommended_time(self, spec: CampaignSpec, campaign_id: str) -> datetime:
        if not self.schedule_generator:
            return self.clock()
        constraints = SchedulingConstraints(**spec.constraints) if spec.constraints else None
        result = self.schedule_generator.generate(SchedulingRequest(
            campaign_id=campaign_id,
            target_audience=TargetAudience(segments=spec.segments, timezone=spec.timezone,
                                           size=spec.audience_size),
            content_type=spec.content_type,
            urgency=Urgency(spec.urgency),
            constraints=constraints
        ))
        return result.best_slot.timestamp if result.best_slot else self.clock()

    # Execution

    def execute(self, spec: Union[CampaignSpec, Dict[str, Any]],
                schedule_id: Optional[int] = None) -> 'CampaignExecution':
        """
        Launch a campaign now.

        Raises:
            ValidationError: If required fields are missing
            CapacityExceededError: If max concurrent executions are already running
        """
        spec = self._coerce(spec)
        report = self.validate(spec)
        if not report.is_valid:
            raise ValidationError(report.errors, report.warnings, report.recommendations)

        running = self.execution_repository.count_running()
        if running >= self.max_concurrent_campaigns:
            raise CapacityExceededError(running, self.max_concurrent_campaigns)

        now = ensure_utc(self.clock())
        execution = self.execution_repository.create(
            plan_id=spec.plan_id or f"plan_{uuid.uuid4().hex[:12]}",
            schedule_id=schedule_id,
            status=ExecutionStatus.RUNNING.value,
            priority=spec.priority,
            progress=0,
            delivered=0,
            opened=0,
            clicked=0,
            converted=0,
            revenue=0.0,
            steps=self.build_steps(spec),
            current_step=0,
            activity_log=[],
            health_flags=[],
            spec_payload=spec.to_dict(),
            cancel_requested=False,
            started_at=now
        )
        self.execution_repository.commit()
        logger.info(f"Executing campaign: execution={execution.id} goal={spec.goal} channels={spec.channels}")

        self._advance(execution, now)
        return execution

    @staticmethod
    def build_steps(spec: CampaignSpec) -> List[Dict[str, Any]]:
        """Ordered step list; the dependency sets are recorded but steps still run one at a time."""
        steps: List[Dict[str, Any]] = []

        def add(agent_id: str, action: str, dependencies: List[str]) -> str:
            step_id = f"step_{len(steps) + 1}"
            steps.append({
                'id': step_id,
                'agent_id': agent_id,
                'action': action,
                'dependencies': dependencies,
                'critical': action in CRITICAL_ACTIONS,
                'status': StepStatus.PENDING.value,
                'result': None,
                'error': None,
                'started_at': None,
                'completed_at': None,
            })
            return step_id

        channels = spec.channels or []
        analysis = add('insight-agent', 'analyze_audience', [])
        content_steps = []
        if 'email' in channels:
            content_steps.append(add('content-agent', 'generate_email_content', [analysis]))
        if 'social_media' in channels:
            content_steps.append(add('social-agent', 'create_social_content', [analysis]))
        if 'paid_ads' in channels:
            add('ads-agent', 'launch_paid_ads', [analysis])
        deploy_agent = 'email-agent' if 'email' in channels else 'distribution-agent'
        add(deploy_agent, 'deploy_campaign', content_steps or [analysis])
        return steps

    def _advance(self, execution: 'CampaignExecution', now: datetime) -> None:
        """Run steps from current_step until finished, cancelled, aborted or parked on a Future."""
        context = dict(execution.spec_payload or {})
        context['execution_id'] = execution.id

        while (execution.current_step or 0) < len(execution.steps or []):
            if execution.cancel_requested:
                self._finish(execution, ExecutionStatus.CANCELLED, now, note='Cancelled by request')
                return

            index = execution.current_step or 0
            steps = [dict(step) for step in execution.steps]
            step = steps[index]

            pending = self._in_flight.get(execution.id)
            if pending is None and step.get('status') == StepStatus.RUNNING.value:
                # Parked by another coordinator, which owns the future; never dispatched twice
                return
            if pending is None:
                step['status'] = StepStatus.RUNNING.value
                step['started_at'] = now.isoformat()
                execution.steps = steps
                try:
                    result = self.step_executor.run(step, context)
                except Exception as e:
                    result = StepOutcome.failed(str(e))
                if isinstance(result, Future) and not result.done():
                    self._in_flight[execution.id] = result
                    self.execution_repository.commit()
                    logger.debug(f"Execution {execution.id} parked on {step['id']}")
                    return
            else:
                if not pending.done():
                    return
                result = self._in_flight.pop(execution.id)

            outcome = self._resolve(result)
            self._apply_outcome(execution, steps, index, outcome, now)

            if (not outcome.success and step.get('critical')
                    and self.failure_policy == FailurePolicy.ABORT_ON_CRITICAL):
                self._finish(execution, ExecutionStatus.FAILED, now,
                             note=f"Critical step {step['id']} ({step['action']}) failed: {outcome.error}")
                return

        self._finish(execution, ExecutionStatus.COMPLETED, now)

    @staticmethod
    def _resolve(result: Union[StepOutcome, Future]) -> StepOutcome:
        if isinstance(result, Future):
            try:
                result = result.result()
            except Exception as e:
                return StepOutcome.failed(str(e))
        if not isinstance(result, StepOutcome):
            return StepOutcome.failed(f"Unexpected step result: {result!r}")
        return result

    def _apply_outcome(self, execution: 'CampaignExecution', steps: List[Dict[str, Any]], index: int,
                       outcome: StepOutcome, now: datetime) -> None:
        steps = [dict(step) for step in steps]
        step = steps[index]
        step['completed_at'] = now.isoformat()
        if outcome.success:
            step['status'] = StepStatus.COMPLETED.value
            step['result'] = outcome.message or f"Step {step['id']} completed successfully"
            for name in METRIC_FIELDS:
                delta = outcome.metrics.get(name)
                if delta:
                    setattr(execution, name, (getattr(execution, name) or 0) + delta)
            log_result = step['result']
        else:
            step['status'] = StepStatus.FAILED.value
            step['error'] = outcome.error
            log_result = f"Step {step['id']} failed: {outcome.error}"
            logger.error(f"Step failed: execution={execution.id} step={step['id']} error={outcome.error}")

        execution.steps = steps
        execution.current_step = index + 1
        attempted = index + 1
        execution.progress = max(execution.progress or 0, int(attempted * 100 / len(steps)))
        self._log_activity(execution, step['agent_id'], step['action'], log_result, now)
        self.execution_repository.commit()

    def _finish(self, execution: 'CampaignExecution', status: ExecutionStatus, now: datetime,
                note: Optional[str] = None) -> None:
        if execution.is_terminal:
            return
        execution.status = status.value
        execution.completed_at = now
        if status == ExecutionStatus.COMPLETED:
            execution.progress = 100
        if note:
            execution.error_note = note
        self._log_activity(execution, COORDINATOR_AGENT_ID, f"execution_{status.value}", note or status.value, now)
        self.execution_repository.commit()
        self._in_flight.pop(execution.id, None)

        logger.info(f"Campaign execution {status.value}: execution={execution.id} progress={execution.progress} "
                    f"delivered={execution.delivered} revenue={execution.revenue}")
        self._remember(f"campaign:completed:{execution.id}", {
            'execution_id': execution.id,
            'final_status': execution.status,
            'final_metrics': {name: getattr(execution, name) or 0 for name in METRIC_FIELDS},
            'completed_at': now,
        }, ['campaign', 'completed', execution.status])

        if status == ExecutionStatus.COMPLETED:
            self._feed_knowledge_base(execution)

    def _feed_knowledge_base(self, execution: 'CampaignExecution') -> None:
        """Report per-segment funnel rates, as percentages of delivered, back to the knowledge base."""
        delivered = execution.delivered or 0
        if not self.knowledge_base or delivered <= 0:
            return
        spec = CampaignSpec.from_dict(execution.spec_payload or {})
        segments = spec.segments or ['general']
        per_segment = max(1, delivered // len(segments))
        performance = ObservedPerformance(
            open_rate=(execution.opened or 0) / delivered * 100.0,
            click_rate=(execution.clicked or 0) / delivered * 100.0,
            conversion_rate=(execution.converted or 0) / delivered * 100.0,
            sample_size=per_segment
        )
        for segment in segments:
            try:
                self.knowledge_base.record_outcome(segment, spec.content_type, ensure_utc(execution.started_at),
                                                   performance, spec.timezone)
            except Exception as e:
                logger.error(f"Failed to record outcome for execution {execution.id} segment {segment}: {e}")

    # Periodic operations

    def tick(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Resume parked executions and run health checks on running ones.

        Health checks only log and flag; the execution timeout is the only forced transition.
        """
        now = ensure_utc(now or self.clock())
        summary = {'checked': 0, 'resumed': 0, 'finished': 0, 'recovery_attempts': 0,
                   'flagged': 0, 'timed_out': 0, 'errors': 0}

        for execution in self.execution_repository.get_running():
            summary['checked'] += 1
            try:
                started_at = ensure_utc(execution.started_at) or now
                if now - started_at > self.execution_timeout:
                    self._time_out(execution, now)
                    summary['timed_out'] += 1
                    continue

                pending = self._in_flight.get(execution.id)
                if pending is not None and pending.done():
                    self._advance(execution, now)
                    summary['resumed'] += 1
                if execution.is_terminal:
                    summary['finished'] += 1
                    continue

                if self._is_stuck(execution, started_at, now) and self._attempt_recovery(execution, now):
                    summary['recovery_attempts'] += 1
                    if execution.is_terminal:
                        summary['finished'] += 1
                        continue

                if self._check_health(execution):
                    summary['flagged'] += 1
            except Exception as e:
                summary['errors'] += 1
                logger.error(f"Campaign monitoring error for execution {execution.id}: {e}")

        self.execution_repository.commit()
        return summary

    def _time_out(self, execution: 'CampaignExecution', now: datetime) -> None:
        pending = self._in_flight.pop(execution.id, None)
        if pending is not None:
            pending.cancel()
        hours = int(self.execution_timeout.total_seconds() // 3600)
        error = ExecutionTimeoutError(f"Execution timed out after {hours} hours")
        logger.warning(f"Execution {execution.id} exceeded hard ceiling: {error}")
        self._finish(execution, ExecutionStatus.FAILED, now, note=str(error))

    def _is_stuck(self, execution: 'CampaignExecution', started_at: datetime, now: datetime) -> bool:
        """No progress past the threshold, or a step left running with nothing in flight for it."""
        if (execution.progress or 0) == 0 and now - started_at > self.stuck_threshold:
            return True
        if execution.id in self._in_flight:
            return False
        steps = execution.steps or []
        index = execution.current_step or 0
        if index >= len(steps) or steps[index].get('status') != StepStatus.RUNNING.value:
            return False
        step_started = steps[index].get('started_at')
        return bool(step_started) and now - ensure_utc(datetime.fromisoformat(step_started)) > self.stuck_threshold

    def _attempt_recovery(self, execution: 'CampaignExecution', now: datetime) -> bool:
        """
        Log one recovery attempt per stuck episode and resume the execution.

        A step parked on a Future stays with the coordinator that dispatched it,
        so resuming never sends it again; an orphaned step runs out at the
        execution timeout.

        Returns:
            False when this episode was already logged
        """
        activity = execution.activity_log or []
        if activity and activity[-1].get('action') == 'recovery_attempt':
            return False
        logger.warning(f"Campaign appears stuck: execution={execution.id} step={execution.current_step}")
        self._log_activity(execution, COORDINATOR_AGENT_ID, 'recovery_attempt',
                           'Attempting to recover stuck campaign', now)
        self.execution_repository.commit()
        if execution.id not in self._in_flight:
            self._advance(execution, now)
        return True

    def _check_health(self, execution: 'CampaignExecution') -> bool:
        delivered = execution.delivered or 0
        opened = execution.opened or 0
        flags = list(execution.health_flags or [])
        raised = []

        if delivered > LOW_ENGAGEMENT_MIN_DELIVERED and opened / delivered < LOW_ENGAGEMENT_OPEN_RATE:
            logger.warning(f"Campaign performance below threshold: execution={execution.id} "
                           f"open_rate={opened / delivered:.3f} delivered={delivered}")
            raised.append('low_engagement')
        if delivered > 0 and (delivered - opened) / delivered > HIGH_BOUNCE_RATE:
            logger.warning(f"High bounce rate detected: execution={execution.id} "
                           f"bounce_rate={(delivered - opened) / delivered:.3f}")
            raised.append('high_bounce')

        new_flags = [flag for flag in raised if flag not in flags]
        if new_flags:
            execution.health_flags = flags + new_flags
        return bool(raised)

    def process_due(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Launch due schedules in priority order while capacity allows.

        Schedules that cannot be admitted stay 'scheduled' for the next pass.
        """
        now = ensure_utc(now or self.clock())
        summary = {'due': 0, 'launched': 0, 'deferred': 0, 'failed': 0, 'rescheduled': 0}

        due = self.schedule_repository.get_due_schedules(now)
        due.sort(key=lambda s: (-self._priority_rank(s.priority), ensure_utc(s.scheduled_time), s.id))
        summary['due'] = len(due)

        for schedule in due:
            if self.execution_repository.count_running() >= self.max_concurrent_campaigns:
                logger.warning(f"Campaign delayed due to capacity: schedule={schedule.id}")
                summary['deferred'] += 1
                continue
            try:
                spec = CampaignSpec.from_dict(schedule.spec_payload or {})
                schedule.status = ScheduleStatus.RUNNING.value
                execution = self.execute(spec, schedule_id=schedule.id)
                schedule.execution_id = execution.id
                schedule.status = ScheduleStatus.COMPLETED.value
                summary['launched'] += 1
                logger.info(f"Scheduled campaign executed: schedule={schedule.id} execution={execution.id}")

                if schedule.recurrence_interval and self._schedule_next(schedule):
                    summary['rescheduled'] += 1
            except CapacityExceededError:
                schedule.status = ScheduleStatus.SCHEDULED.value
                summary['deferred'] += 1
            except Exception as e:
                schedule.status = ScheduleStatus.FAILED.value
                summary['failed'] += 1
                logger.error(f"Scheduled campaign execution failed: schedule={schedule.id} error={e}")
            self.schedule_repository.commit()

        return summary

    @staticmethod
    def _priority_rank(priority: Optional[str]) -> int:
        try:
            return SchedulePriority(priority).rank
        except ValueError:
            return SchedulePriority.MEDIUM.rank

    @staticmethod
    def next_occurrence(current: datetime, interval: str) -> datetime:
        interval = RecurrenceInterval(interval)
        if interval == RecurrenceInterval.DAILY:
            return current + timedelta(days=1)
        if interval == RecurrenceInterval.WEEKLY:
            return current + timedelta(days=7)
        return add_months(current, 1)

    def _schedule_next(self, schedule: 'CampaignSchedule') -> Optional['CampaignSchedule']:
        next_time = self.next_occurrence(ensure_utc(schedule.scheduled_time), schedule.recurrence_interval)
        end_date = ensure_utc(schedule.recurrence_end_date)
        if end_date and next_time > end_date:
            logger.info(f"Recurring campaign series completed: schedule={schedule.id}")
            return None

        next_schedule = self.schedule_repository.create(
            campaign_id=schedule.campaign_id,
            scheduled_time=next_time,
            status=ScheduleStatus.SCHEDULED.value,
            priority=schedule.priority,
            recurrence_interval=schedule.recurrence_interval,
            recurrence_end_date=schedule.recurrence_end_date,
            parent_schedule_id=schedule.id,
            spec_payload=schedule.spec_payload,
            warnings=schedule.warnings
        )
        self._remember(f"campaign:scheduled:{next_schedule.id}", schedule_to_dict(next_schedule),
                       ['campaign', 'scheduled', 'recurring'])
        logger.info(f"Recurring campaign rescheduled: schedule={next_schedule.id} time={next_time.isoformat()}")
        return next_schedule

    # Cancellation and status

    def cancel_schedule(self, schedule_id: int) -> Result:
        schedule = self.schedule_repository.get_by_id(schedule_id)
        if not schedule:
            return Result.failure(f"Schedule {schedule_id} not found", code='NOT_FOUND')
        if schedule.status != ScheduleStatus.SCHEDULED.value:
            return Result.failure(f"Cannot cancel schedule in status {schedule.status}", code='INVALID_STATE')
        schedule.status = ScheduleStatus.CANCELLED.value
        self.schedule_repository.commit()
        logger.info(f"Schedule cancelled: {schedule_id}")
        return Result.success(schedule)

    def cancel_execution(self, execution_id: int) -> Result:
        """
        Request cancellation. Steps are not preemptible: an in-flight step is
        allowed to finish and the execution becomes cancelled at the next boundary.
        """
        execution = self.execution_repository.get_by_id(execution_id)
        if not execution:
            return Result.failure(f"Execution {execution_id} not found", code='NOT_FOUND')
        if execution.is_terminal:
            return Result.failure(f"Cannot cancel execution in status {execution.status}", code='INVALID_STATE')

        execution.cancel_requested = True
        pending = self._in_flight.get(execution.id)
        if pending is None or pending.cancel():
            self._in_flight.pop(execution.id, None)
            self._finish(execution, ExecutionStatus.CANCELLED, ensure_utc(self.clock()), note='Cancelled by request')
        else:
            self.execution_repository.commit()
        return Result.success(execution)

    def get_schedule_info(self, schedule_id: int) -> Result:
        schedule = self.schedule_repository.get_by_id(schedule_id)
        if not schedule:
            return Result.failure(f"Schedule {schedule_id} not found", code='NOT_FOUND')
        return Result.success(schedule_to_dict(schedule))

    def get_campaign_status(self) -> Dict[str, Any]:
        running = self.execution_repository.get_running()
        scheduled = self.schedule_repository.get_pending()
        capacity = self.max_concurrent_campaigns
        return {
            'running': [execution_to_dict(execution) for execution in running],
            'scheduled': [schedule_to_dict(schedule) for schedule in scheduled],
            'statistics': {
                'total_running': len(running),
                'total_scheduled': len(scheduled),
                'capacity': capacity,
                'utilization_rate': len(running) / capacity if capacity else 0.0,
            }
        }

    # Helpers

    @staticmethod
    def _coerce(spec: Union[CampaignSpec, Dict[str, Any]]) -> CampaignSpec:
        return spec if isinstance(spec, CampaignSpec) else CampaignSpec.from_dict(spec)

    @staticmethod
    def _log_activity(execution: 'CampaignExecution', agent_id: str, action: str, result: str,
                      now: datetime) -> None:
        execution.activity_log = list(execution.activity_log or []) + [{
            'agent_id': agent_id,
            'action': action,
            'timestamp': now.isoformat(),
            'result': result,
        }]

    def _remember(self, key: str, value: Dict[str, Any], tags: List[Optional[str]]) -> None:
        if not self.memory_repository:
            return
        self.memory_repository.store(key, value, [tag for tag in tags if tag])
        self.memory_repository.commit()
