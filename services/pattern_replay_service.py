"""
Pattern Replay Service
Clones high-scoring historical campaign patterns, refreshes them through the
content, timing and brand collaborators, and measures the replay against the
pattern's predicted ROI
"""

import logging
import random
from collections import Counter, defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

import numpy as np
from scipy import stats

from repositories.campaign_pattern_repository import CampaignPatternRepository
from repositories.memory_repository import MemoryRepository
from repositories.replay_execution_repository import ReplayExecutionRepository
from services.collaborators import (
    BrandAnalyzer, BrandComplianceRequest, ContentGenerator, ContentRequest, PlanGenerator, ReplayPlan,
    call_with_timeout
)
from services.common.result import Result
from services.enums import ModificationType, ReplayStatus, Urgency
from services.exceptions import CapacityExceededError, CollaboratorError, NotFoundError
from services.schedule_generator_service import ScheduleGenerator, SchedulingRequest, TargetAudience
from services.timing_knowledge_service import ObservedPerformance, TimingKnowledgeBase
from utils.datetime_utils import utc_now, ensure_utc

if TYPE_CHECKING:
    from autopilot_database import CampaignPattern, ReplayExecution
    from services.campaign_execution_service import CampaignExecutionCoordinator

logger = logging.getLogger(__name__)

LEARNING_VARIANCE_THRESHOLD = 0.1
HIGH_ROI = 2.0
LOW_ROI = 1.0
INSIGHT_EXCEED_RATE = 0.7
INSIGHT_MIN_USES = 3
SUCCESS_RATE_FLOOR = 0.7
SIGNIFICANCE_LEVEL = 0.05
TOP_PATTERN_COUNT = 5


@dataclass
class ReplayConfig:
    confidence_threshold: float = 85.0
    max_concurrent_replays: int = 3
    minimum_time_between_replays_hours: int = 24
    budget_allocation: float = 10000.0
    enable_content_refresh: bool = True
    enable_timing_optimization: bool = True
    enable_brand_validation: bool = True
    brand_score_threshold: float = 80.0
    test_mode: bool = False
    pattern_max_age_days: int = 90
    replay_timeout_hours: int = 48
    variance_bound: float = 0.2
    collaborator_timeout_seconds: float = 10.0


def replay_to_dict(replay: 'ReplayExecution') -> Dict[str, Any]:
    created_at = ensure_utc(replay.created_at)
    started_at = ensure_utc(replay.started_at)
    completed_at = ensure_utc(replay.completed_at)
    return {
        'id': replay.id,
        'pattern_id': replay.pattern_id,
        'status': replay.status,
        'plan': replay.plan,
        'modifications': replay.modifications or [],
        'performance': {
            'predicted_roi': replay.predicted_roi,
            'actual_roi': replay.actual_roi,
            'variance': replay.variance,
            'key_metrics': replay.key_metrics or {},
        },
        'learnings': replay.learnings or [],
        'error_log': replay.error_log or [],
        'execution_id': replay.execution_id,
        'created_at': created_at.isoformat() if created_at else None,
        'started_at': started_at.isoformat() if started_at else None,
        'completed_at': completed_at.isoformat() if completed_at else None,
    }


class PatternReplayEngine:
    """
    Replays proven campaign patterns.

    Plan derivation and timing optimization are in-process and run inline;
    content and brand collaborators are remote and run under a hard timeout.
    A failed or timed out collaborator only drops its modification.
    """

    def __init__(self,
                 pattern_repository: CampaignPatternRepository,
                 replay_repository: ReplayExecutionRepository,
                 plan_generator: PlanGenerator,
                 coordinator: Optional['CampaignExecutionCoordinator'] = None,
                 schedule_generator: Optional[ScheduleGenerator] = None,
                 knowledge_base: Optional[TimingKnowledgeBase] = None,
                 content_generator: Optional[ContentGenerator] = None,
                 brand_analyzer: Optional[BrandAnalyzer] = None,
                 memory_repository: Optional[MemoryRepository] = None,
                 config: Optional[ReplayConfig] = None,
                 seed: Optional[int] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.pattern_repository = pattern_repository
        self.replay_repository = replay_repository
        self.plan_generator = plan_generator
        self.coordinator = coordinator
        self.schedule_generator = schedule_generator
        self.knowledge_base = knowledge_base
        self.content_generator = content_generator
        self.brand_analyzer = brand_analyzer
        self.memory_repository = memory_repository
        self.config = config or ReplayConfig()
        self.random = random.Random(seed)
        self.clock = clock

    # Opportunity scanning

    def scan_opportunities(self, now: Optional[datetime] = None) -> List['CampaignPattern']:
        """
        Find patterns eligible for replay.

        Returns:
            Patterns at or above the confidence threshold that are fresh and not
            recently replayed, limited by remaining replay capacity
        """
        now = ensure_utc(now or self.clock())
        active = self.replay_repository.count_active()
        if active >= self.config.max_concurrent_replays:
            logger.info(f"Replay capacity reached ({active}/{self.config.max_concurrent_replays}), skipping scan")
            return []

        try:
            patterns = self.pattern_repository.get_patterns_by_score(self.config.confidence_threshold)
        except Exception as e:
            logger.error(f"Failed to fetch replay patterns: {e}")
            return []

        max_age = timedelta(days=self.config.pattern_max_age_days)
        min_gap = timedelta(hours=self.config.minimum_time_between_replays_hours)
        opportunities = []
        for pattern in patterns:
            if active + len(opportunities) >= self.config.max_concurrent_replays:
                break
            created_at = ensure_utc(pattern.created_at)
            if created_at and now - created_at > max_age:
                logger.debug(f"Pattern {pattern.id} is stale, skipping")
                continue
            latest = self.replay_repository.get_latest_for_pattern(pattern.id)
            if latest and now - ensure_utc(latest.created_at) < min_gap:
                logger.debug(f"Pattern {pattern.id} replayed recently, skipping")
                continue
            opportunities.append(pattern)

        logger.info(f"Found {len(opportunities)} replay opportunities from {len(patterns)} patterns")
        return opportunities

    # Replay

    def replay(self, pattern: 'CampaignPattern',
               overrides: Optional[Dict[str, Any]] = None) -> 'ReplayExecution':
        """
        Replay a single pattern.

        Args:
            pattern: Source pattern
            overrides: ReplayConfig field overrides for this replay only

        Returns:
            The ReplayExecution record

        Raises:
            CollaboratorError: If no plan can be derived from the pattern
        """
        config = replace(self.config, **overrides) if overrides else self.config
        now = ensure_utc(self.clock())

        plan, plan_error = None, None
        try:
            plan = self.plan_generator.generate_plan(pattern, config.budget_allocation)
        except Exception as e:
            plan_error = e

        record = self.replay_repository.create(
            pattern_id=pattern.id,
            status=ReplayStatus.QUEUED.value,
            plan=plan.to_dict() if plan else None,
            predicted_roi=plan.predicted_roi if plan else None,
            modifications=[],
            learnings=[],
            error_log=[],
            created_at=now
        )
        self.replay_repository.commit()

        if plan is None:
            message = f"Plan generation failed for pattern {pattern.id}: {plan_error}"
            logger.error(message)
            self._fail(record, message, now)
            raise CollaboratorError(message) from plan_error

        logger.info(f"Replaying pattern {pattern.id}: replay={record.id} predicted_roi={plan.predicted_roi}")
        modifications = self._apply_modifications(record, plan, config)
        record.modifications = modifications
        record.plan = plan.to_dict()
        self.replay_repository.commit()
        self._remember(f"replay:started:{record.id}", replay_to_dict(record), ['replay', 'started', pattern.id])

        if config.test_mode:
            self._simulate(record, plan, modifications, config, now)
        else:
            self._launch(record, plan, now)
        return record

    def _apply_modifications(self, record: 'ReplayExecution', plan: ReplayPlan,
                             config: ReplayConfig) -> List[Dict[str, Any]]:
        modifications = []
        passes = (
            (config.enable_content_refresh, self._refresh_content),
            (config.enable_timing_optimization, self._optimize_timing),
            (config.enable_brand_validation, self._validate_brand),
        )
        for enabled, modification_pass in passes:
            if not enabled:
                continue
            try:
                modification = modification_pass(record, plan, config)
            except Exception as e:
                logger.warning(f"Replay {record.id}: {modification_pass.__name__.lstrip('_')} skipped: {e}")
                continue
            if modification:
                modifications.append(modification)
        return modifications

    def _refresh_content(self, record: 'ReplayExecution', plan: ReplayPlan,
                         config: ReplayConfig) -> Optional[Dict[str, Any]]:
        if not self.content_generator:
            return None
        request = ContentRequest(
            content_type=plan.content_type,
            topic=plan.objective.replace('_', ' '),
            audience=', '.join(plan.segments),
            tone=plan.tone,
            subjects=list(plan.subjects),
            variants=max(3, len(plan.subjects))
        )
        variants = call_with_timeout(self.content_generator.generate_content,
                                     config.collaborator_timeout_seconds, request)
        if not variants.subjects:
            return None
        before = list(plan.subjects)
        plan.subjects = list(variants.subjects)
        return {
            'type': ModificationType.CONTENT.value,
            'before': {'subjects': before},
            'after': {'subjects': plan.subjects},
            'rationale': 'Refreshed subject lines to avoid audience fatigue',
            'confidence': max(0.0, min(float(variants.confidence), 1.0)),
        }

    def _optimize_timing(self, record: 'ReplayExecution', plan: ReplayPlan,
                         config: ReplayConfig) -> Optional[Dict[str, Any]]:
        if not self.schedule_generator:
            return None
        result = self.schedule_generator.generate(SchedulingRequest(
            campaign_id=f"replay_{record.id}",
            target_audience=TargetAudience(segments=plan.segments),
            content_type=plan.content_type,
            urgency=Urgency.MEDIUM
        ))
        slot = result.best_slot
        if not slot:
            return None
        before = list(plan.timing_windows)
        plan.timing_windows = [slot.timestamp.isoformat()]
        return {
            'type': ModificationType.TIMING.value,
            'before': {'timing_windows': before},
            'after': {'timing_windows': plan.timing_windows},
            'rationale': f"Moved send to the best current slot for {slot.segment}",
            'confidence': result.performance.confidence_score,
            'slot': slot.to_dict(),
        }

    def _validate_brand(self, record: 'ReplayExecution', plan: ReplayPlan,
                        config: ReplayConfig) -> Optional[Dict[str, Any]]:
        if not self.brand_analyzer:
            return None
        request = BrandComplianceRequest(
            content=' | '.join(plan.subjects) or plan.name,
            tone=plan.tone,
            context=plan.objective
        )
        report = call_with_timeout(self.brand_analyzer.analyze_brand_compliance,
                                   config.collaborator_timeout_seconds, request)
        if report.score >= config.brand_score_threshold:
            logger.debug(f"Replay {record.id} brand score {report.score} passes")
            return None
        return {
            'type': ModificationType.CONTENT.value,
            'before': {'tone': plan.tone, 'brand_score': report.score},
            'after': {'tone': plan.tone, 'corrections': list(report.suggestions)},
            'rationale': f"Brand score {report.score:.1f} below {config.brand_score_threshold:.0f}, "
                         f"applied tone corrections",
            'confidence': max(0.0, min(float(report.confidence), 1.0)),
        }

    def _simulate(self, record: 'ReplayExecution', plan: ReplayPlan, modifications: List[Dict[str, Any]],
                  config: ReplayConfig, now: datetime) -> None:
        """Synthesize an outcome within the variance bound around the predicted ROI."""
        record.status = ReplayStatus.RUNNING.value
        record.started_at = now

        predicted = plan.predicted_roi
        actual = predicted * (1 + self.random.uniform(-config.variance_bound, config.variance_bound))
        delivered = self.random.randint(800, 1200)
        opened = int(delivered * self.random.uniform(0.18, 0.30))
        clicked = int(opened * self.random.uniform(0.08, 0.15))
        converted = int(clicked * self.random.uniform(0.03, 0.08))
        metrics = {
            'delivered': delivered,
            'opened': opened,
            'clicked': clicked,
            'converted': converted,
            'budget': plan.budget,
            'revenue': round(plan.budget * (1 + actual), 2),
        }
        self._complete(record, actual, metrics, now)

        timing = next((m for m in modifications if m['type'] == ModificationType.TIMING.value), None)
        if timing and self.knowledge_base:
            slot = timing['slot']
            try:
                self.knowledge_base.record_outcome(
                    slot['segment'], plan.content_type, datetime.fromisoformat(slot['timestamp']),
                    ObservedPerformance(
                        open_rate=opened / delivered * 100.0,
                        click_rate=clicked / delivered * 100.0,
                        conversion_rate=converted / delivered * 100.0,
                        sample_size=delivered
                    ),
                    slot['timezone']
                )
            except Exception as e:
                logger.error(f"Failed to feed simulated replay {record.id} back to knowledge base: {e}")

    def _launch(self, record: 'ReplayExecution', plan: ReplayPlan, now: datetime) -> None:
        """Hand the plan to the coordinator; capacity exceeded leaves the replay queued."""
        if not self.coordinator:
            self._fail(record, 'No execution coordinator configured', now)
            return

        spec = {
            'goal': plan.objective,
            'channels': plan.channels,
            'target_audience': f"Replay of pattern {plan.pattern_id} for {', '.join(plan.segments)}",
            'budget': plan.budget,
            'tone': plan.tone,
            'content_type': plan.content_type,
            'segments': plan.segments,
            'campaign_id': f"replay_{record.id}",
            'plan_id': plan.id,
        }
        try:
            execution = self.coordinator.execute(spec)
        except CapacityExceededError as e:
            logger.info(f"Replay {record.id} deferred: {e}")
            return
        except Exception as e:
            self._fail(record, f"Launch failed: {e}", now)
            return

        record.status = ReplayStatus.RUNNING.value
        record.started_at = now
        record.execution_id = execution.id
        self.replay_repository.commit()
        logger.info(f"Replay {record.id} launched as execution {execution.id}")

        if execution.is_terminal:
            self._resolve_execution(record, execution, now)

    def _resolve_execution(self, record: 'ReplayExecution', execution, now: datetime) -> None:
        if execution.status != 'completed':
            note = f": {execution.error_note}" if execution.error_note else ''
            self._fail(record, f"Execution {execution.id} ended {execution.status}{note}", now)
            return
        budget = float((record.plan or {}).get('budget') or 0.0)
        revenue = float(execution.revenue or 0.0)
        actual = (revenue - budget) / budget if budget > 0 else 0.0
        metrics = {
            'delivered': execution.delivered or 0,
            'opened': execution.opened or 0,
            'clicked': execution.clicked or 0,
            'converted': execution.converted or 0,
            'budget': budget,
            'revenue': revenue,
        }
        self._complete(record, actual, metrics, now)

    def _complete(self, record: 'ReplayExecution', actual_roi: float, metrics: Dict[str, Any],
                  now: datetime) -> None:
        predicted = record.predicted_roi or 0.0
        variance = (actual_roi - predicted) / predicted if predicted else 0.0

        record.actual_roi = round(actual_roi, 4)
        record.variance = round(variance, 4)
        record.key_metrics = metrics
        record.learnings = self.derive_learnings(record.modifications or [], predicted, actual_roi, variance)
        record.status = ReplayStatus.COMPLETED.value
        record.completed_at = now
        self.replay_repository.commit()

        logger.info(f"Replay {record.id} completed: predicted={predicted:.2f} actual={actual_roi:.2f} "
                    f"variance={variance:.1%}")
        self._remember(f"replay:completed:{record.id}", replay_to_dict(record),
                       ['replay', 'completed', record.pattern_id])

    def _fail(self, record: 'ReplayExecution', message: str, now: datetime) -> None:
        record.status = ReplayStatus.FAILED.value
        record.error_log = list(record.error_log or []) + [message]
        record.completed_at = now
        self.replay_repository.commit()
        logger.error(f"Replay {record.id} failed: {message}")

    @staticmethod
    def derive_learnings(modifications: List[Dict[str, Any]], predicted: float, actual: float,
                         variance: float) -> List[str]:
        learnings = []
        if variance > LEARNING_VARIANCE_THRESHOLD:
            learnings.append(f"Replay exceeded predicted ROI by {variance:.1%}")
        elif variance < -LEARNING_VARIANCE_THRESHOLD:
            learnings.append(f"Replay fell short of predicted ROI by {abs(variance):.1%}")

        if actual > HIGH_ROI:
            learnings.append(f"Pattern remains highly effective at {actual:.2f}x ROI")

        types = {modification['type'] for modification in modifications}
        if actual > predicted:
            if ModificationType.CONTENT.value in types:
                learnings.append('Content modifications correlated with exceeding prediction')
            if ModificationType.TIMING.value in types:
                learnings.append('Timing optimization correlated with exceeding prediction')
        return learnings

    # Periodic cycle

    def monitor(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Resolve launched replays, retry deferred launches and enforce the replay timeout."""
        now = ensure_utc(now or self.clock())
        timeout = timedelta(hours=self.config.replay_timeout_hours)
        summary = {'checked': 0, 'completed': 0, 'failed': 0, 'timed_out': 0, 'relaunched': 0, 'errors': 0}

        for record in self.replay_repository.get_active():
            summary['checked'] += 1
            try:
                if record.status == ReplayStatus.RUNNING.value:
                    started_at = ensure_utc(record.started_at or record.created_at)
                    if now - started_at > timeout:
                        self._time_out(record, now)
                        summary['timed_out'] += 1
                        continue
                    execution = record.execution
                    if execution is not None and execution.is_terminal:
                        self._resolve_execution(record, execution, now)
                        summary['completed' if record.status == ReplayStatus.COMPLETED.value else 'failed'] += 1
                elif record.plan and not record.execution_id and not self.config.test_mode:
                    self._launch(record, ReplayPlan(**record.plan), now)
                    if record.status == ReplayStatus.RUNNING.value:
                        summary['relaunched'] += 1
            except Exception as e:
                summary['errors'] += 1
                logger.error(f"Replay monitoring error for replay {record.id}: {e}")

        return summary

    def _time_out(self, record: 'ReplayExecution', now: datetime) -> None:
        self._fail(record, f"Replay timed out after {self.config.replay_timeout_hours} hours", now)
        if record.execution_id and self.coordinator:
            result = self.coordinator.cancel_execution(record.execution_id)
            if result.is_failure:
                logger.warning(f"Could not cancel execution {record.execution_id}: {result.error}")

    def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = ensure_utc(now or self.clock())
        summary = {'monitor': self.monitor(now), 'opportunities': 0, 'replayed': 0, 'errors': 0}

        opportunities = self.scan_opportunities(now)
        summary['opportunities'] = len(opportunities)
        for pattern in opportunities:
            try:
                self.replay(pattern)
                summary['replayed'] += 1
            except Exception as e:
                summary['errors'] += 1
                logger.error(f"Replay of pattern {pattern.id} failed: {e}")

        logger.info(f"Replay cycle complete: {summary}")
        return summary

    # Analytics

    def get_analytics(self, days: int = 30) -> Dict[str, Any]:
        """
        Aggregate replay outcomes over the last `days` days.

        Includes a one-sample t-test of variance against zero once there are
        at least three completed replays, to detect systematic prediction bias.
        """
        now = ensure_utc(self.clock())
        replays = self.replay_repository.get_since(now - timedelta(days=days))
        completed = [r for r in replays if r.status == ReplayStatus.COMPLETED.value]

        total = len(replays)
        success_rate = len(completed) / total if total else 0.0
        rois = [r.actual_roi for r in completed if r.actual_roi is not None]
        average_roi = float(np.mean(rois)) if rois else 0.0

        by_pattern = defaultdict(list)
        for r in completed:
            if r.actual_roi is not None:
                by_pattern[r.pattern_id].append(r.actual_roi)
        top_patterns = sorted(
            ({'pattern_id': pattern_id, 'average_roi': float(np.mean(values)), 'replays': len(values)}
             for pattern_id, values in by_pattern.items()),
            key=lambda p: p['average_roi'], reverse=True
        )[:TOP_PATTERN_COUNT]

        modification_counts = Counter(
            m['type'] for r in completed for m in (r.modifications or [])
        )
        common_modifications = [{'type': t, 'count': c} for t, c in modification_counts.most_common()]

        insights = self._modification_insights(completed)
        variances = [r.variance for r in completed if r.variance is not None]
        variance_test = self._variance_test(variances)
        recommendations = self._recommendations(rois, average_roi, total, success_rate,
                                                modification_counts, variance_test)

        return {
            'window_days': days,
            'total_replays': total,
            'successful_replays': len(completed),
            'success_rate': success_rate,
            'average_roi': average_roi,
            'top_patterns': top_patterns,
            'common_modifications': common_modifications,
            'insights': insights,
            'recommendations': recommendations,
            'variance_test': variance_test,
        }

    @staticmethod
    def _modification_insights(completed: List['ReplayExecution']) -> List[str]:
        uses = Counter()
        exceeded = Counter()
        for r in completed:
            for modification_type in {m['type'] for m in (r.modifications or [])}:
                uses[modification_type] += 1
                if (r.variance or 0.0) > 0:
                    exceeded[modification_type] += 1

        insights = []
        for modification_type, count in uses.items():
            rate = exceeded[modification_type] / count
            if count >= INSIGHT_MIN_USES and rate > INSIGHT_EXCEED_RATE:
                insights.append(f"{modification_type.title()} modifications exceeded prediction in "
                                f"{rate:.0%} of {count} replays")
        return insights

    @staticmethod
    def _variance_test(variances: List[float]) -> Optional[Dict[str, float]]:
        if len(variances) < 3:
            return None
        t_statistic, p_value = stats.ttest_1samp(np.asarray(variances, dtype=float), 0.0)
        if np.isnan(p_value):
            return None
        return {
            't_statistic': float(t_statistic),
            'p_value': float(p_value),
            'mean_variance': float(np.mean(variances)),
            'sample_size': len(variances),
        }

    @staticmethod
    def _recommendations(rois: List[float], average_roi: float, total: int, success_rate: float,
                         modification_counts: Counter,
                         variance_test: Optional[Dict[str, float]]) -> List[str]:
        recommendations = []
        if rois and average_roi > HIGH_ROI:
            recommendations.append('Replays are highly profitable, consider increasing replay frequency')
        elif rois and average_roi < LOW_ROI:
            recommendations.append('Replay ROI is below 1.0, review pattern selection criteria')
        if total and success_rate < SUCCESS_RATE_FLOOR:
            recommendations.append('Success rate is below 70%, apply stricter pattern validation before replay')
        if modification_counts.get(ModificationType.CONTENT.value):
            recommendations.append('Content refresh features in successful replays, consider dynamic content generation')
        if variance_test and variance_test['p_value'] < SIGNIFICANCE_LEVEL:
            if variance_test['mean_variance'] > 0:
                recommendations.append(f"Replays systematically beat predictions (p={variance_test['p_value']:.3f}), "
                                       f"raise ROI predictions")
            else:
                recommendations.append(f"Replays systematically miss predictions (p={variance_test['p_value']:.3f}), "
                                       f"lower ROI predictions")
        return recommendations

    # Manual control

    def trigger_manual_replay(self, pattern_id: str,
                              overrides: Optional[Dict[str, Any]] = None) -> 'ReplayExecution':
        """
        Replay a specific pattern, bypassing the opportunity scan.

        Raises:
            NotFoundError: If the pattern does not exist
        """
        pattern = self.pattern_repository.get_by_id(pattern_id)
        if not pattern:
            raise NotFoundError(f"Pattern {pattern_id} not found")
        logger.info(f"Manual replay triggered for pattern {pattern_id}")
        return self.replay(pattern, overrides)

    def get_replay_status(self, replay_id: int) -> Result:
        record = self.replay_repository.get_by_id(replay_id)
        if not record:
            return Result.failure(f"Replay {replay_id} not found", code='NOT_FOUND')
        return Result.success(replay_to_dict(record))

    def cancel_replay(self, replay_id: int) -> Result:
        record = self.replay_repository.get_by_id(replay_id)
        if not record:
            return Result.failure(f"Replay {replay_id} not found", code='NOT_FOUND')
        if not record.is_active:
            return Result.failure(f"Cannot cancel replay in status {record.status}", code='INVALID_STATE')

        record.status = ReplayStatus.CANCELLED.value
        record.completed_at = ensure_utc(self.clock())
        self.replay_repository.commit()
        if record.execution_id and self.coordinator:
            self.coordinator.cancel_execution(record.execution_id)
        logger.info(f"Replay {replay_id} cancelled")
        return Result.success(record)

    def stop(self) -> int:
        """Cancel every queued replay. Running replays are left to finish or time out."""
        now = ensure_utc(self.clock())
        queued = self.replay_repository.find_by(status=ReplayStatus.QUEUED.value)
        for record in queued:
            record.status = ReplayStatus.CANCELLED.value
            record.completed_at = now
        self.replay_repository.commit()
        logger.info(f"Replay engine stopped, cancelled {len(queued)} queued replays")
        return len(queued)

    def _remember(self, key: str, value: Dict[str, Any], tags: List[Optional[str]]) -> None:
        if not self.memory_repository:
            return
        self.memory_repository.store(key, value, [tag for tag in tags if tag])
        self.memory_repository.commit()
