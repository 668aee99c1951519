"""
Schedule Generator Service
Turns timing insights plus delivery constraints into ranked schedule slots
and alternative scheduling strategies
"""

import calendar
import logging
import uuid
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Any, Tuple, TYPE_CHECKING

from repositories.memory_repository import MemoryRepository
from services.enums import Urgency, SlotPriority
from services.timing_knowledge_service import TimingKnowledgeBase
from utils.datetime_utils import (
    utc_now, ensure_utc, utc_to_local, local_to_utc, next_weekday_occurrence, season_for
)

if TYPE_CHECKING:
    from autopilot_database import TimingInsight

logger = logging.getLogger(__name__)

MAX_PRIMARY_SLOTS = 5
HIGH_URGENCY_WINDOW = timedelta(hours=6)
AGGRESSIVE_SHIFT = timedelta(hours=2)
AGGRESSIVE_DISCOUNT = 0.9
CONSERVATIVE_MIN_CONFIDENCE = 0.8
FALLBACK_DAY_OF_WEEK = 1  # Tuesday
FALLBACK_HOUR = 10
FALLBACK_CONFIDENCE = 0.2
FALLBACK_SEARCH_WEEKS = 8
BUSINESS_HOURS = (9, 17)
HIGH_COMPETITION_HOURS = {9, 10, 11}

# Predicted-over-historical lift per metric
OPEN_RATE_LIFT = 1.05
CLICK_RATE_LIFT = 1.03
CONVERSION_RATE_LIFT = 1.02


@dataclass
class TargetAudience:
    segments: List[str]
    timezone: str = 'UTC'
    size: int = 0


@dataclass
class SchedulingConstraints:
    business_hours: bool = False
    weekends_allowed: bool = True
    blackout_dates: List[str] = field(default_factory=list)  # local ISO dates
    max_sends_per_day: Optional[int] = None


@dataclass
class SchedulingRequest:
    campaign_id: str
    target_audience: TargetAudience
    content_type: str
    urgency: Urgency = Urgency.MEDIUM
    constraints: Optional[SchedulingConstraints] = None
    frequency: str = 'once'


@dataclass
class PerformanceSnapshot:
    """Rates are percentages, engagement_score is a 0-1 expected conversion."""
    open_rate: float
    click_rate: float
    conversion_rate: float
    engagement_score: float
    sample_size: int
    confidence: float
    last_updated: Optional[datetime] = None


@dataclass
class ScheduleSlot:
    id: str
    timestamp: datetime
    timezone: str
    day_of_week: int
    hour: int
    segment: str
    audience_size: int
    expected_engagement: float
    priority: SlotPriority
    historical: PerformanceSnapshot
    predicted: PerformanceSnapshot

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['priority'] = self.priority.value
        for key in ('historical', 'predicted'):
            last_updated = data[key].get('last_updated')
            data[key]['last_updated'] = last_updated.isoformat() if last_updated else None
        return data


@dataclass
class PerformanceProjection:
    expected_open_rate: float = 0.0
    expected_click_rate: float = 0.0
    expected_conversion_rate: float = 0.0
    confidence_score: float = 0.0


@dataclass
class SchedulingReasoning:
    primary_factors: List[str] = field(default_factory=list)
    seasonal_factors: List[str] = field(default_factory=list)
    audience_insights: List[str] = field(default_factory=list)
    competitive_analysis: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class SchedulingOptimization:
    type: str
    description: str
    expected_improvement: float
    confidence: float
    implementation: str


@dataclass
class SchedulingResult:
    campaign_id: str
    primary: List[ScheduleSlot]
    alternatives: Dict[str, List[ScheduleSlot]]
    performance: PerformanceProjection
    reasoning: SchedulingReasoning
    optimizations: List[SchedulingOptimization]
    generated_at: datetime
    excluded_count: int = 0

    @property
    def best_slot(self) -> Optional[ScheduleSlot]:
        return self.primary[0] if self.primary else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'campaign_id': self.campaign_id,
            'primary': [slot.to_dict() for slot in self.primary],
            'alternatives': {
                name: [slot.to_dict() for slot in slots]
                for name, slots in self.alternatives.items()
            },
            'performance': asdict(self.performance),
            'reasoning': asdict(self.reasoning),
            'optimizations': [asdict(opt) for opt in self.optimizations],
            'generated_at': self.generated_at.isoformat(),
            'excluded_count': self.excluded_count,
        }


class ScheduleGenerator:
    """Builds ranked, constraint-respecting schedule slots from the timing knowledge base"""

    def __init__(self,
                 knowledge_base: TimingKnowledgeBase,
                 memory_repository: Optional[MemoryRepository] = None,
                 min_insight_confidence: float = 0.2,
                 conservative_min_sample_size: int = 500,
                 immediate_lead_minutes: int = 60,
                 clock: Callable[[], datetime] = utc_now):
        self.knowledge_base = knowledge_base
        self.memory_repository = memory_repository
        self.min_insight_confidence = min_insight_confidence
        self.conservative_min_sample_size = conservative_min_sample_size
        self.immediate_lead = timedelta(minutes=min(immediate_lead_minutes, 60))
        self.clock = clock

    def generate(self, request: SchedulingRequest) -> SchedulingResult:
        """
        Produce primary slots, alternative strategies, a projection and reasoning.

        Args:
            request: Campaign, audience, content type, urgency and constraints

        Returns:
            SchedulingResult; never fails for lack of timing data
        """
        now = ensure_utc(self.clock())
        urgency = Urgency(request.urgency)
        constraints = request.constraints or SchedulingConstraints()
        audience = request.target_audience

        candidates: List[ScheduleSlot] = []
        segment_notes: List[str] = []
        excluded = 0

        for segment in audience.segments:
            insights = self.knowledge_base.top_insights(segment, request.content_type, self.min_insight_confidence)
            if not insights:
                segment_notes.append(f"{segment}: no timing history for {request.content_type}; "
                                     f"using default Tuesday 10:00 slot")
                fallback = self._fallback_slot(segment, audience, urgency, constraints, now)
                if fallback:
                    candidates.append(fallback)
                continue

            kept = 0
            for insight in insights:
                slot = self._slot_from_insight(insight, segment, audience, urgency, now)
                if self.is_allowed(slot.timestamp, constraints, audience.timezone):
                    candidates.append(slot)
                    kept += 1
                else:
                    excluded += 1
            best = insights[0]
            segment_notes.append(
                f"{segment}: {len(insights)} insight(s), {kept} within constraints; peak activity "
                f"{calendar.day_name[best.day_of_week]} {best.hour:02d}:00 ({best.conversion_rate:.2f}% conversion)"
            )

        ranked = self._dedupe(sorted(candidates, key=self._rank_key))
        if not ranked and audience.segments:
            # Every learned slot was excluded; fall back rather than return nothing
            fallback = self._fallback_slot(audience.segments[0], audience, urgency, constraints, now)
            if fallback:
                ranked = [fallback]

        primary = self._cap_per_day(ranked, constraints, audience.timezone)[:MAX_PRIMARY_SLOTS]
        alternatives = self._alternatives(ranked, primary, constraints, audience.timezone)
        performance = self.project_performance(primary)
        reasoning = self._reasoning(request, primary, segment_notes, excluded, performance, now)
        optimizations = self._optimizations(request)

        result = SchedulingResult(
            campaign_id=request.campaign_id,
            primary=primary,
            alternatives=alternatives,
            performance=performance,
            reasoning=reasoning,
            optimizations=optimizations,
            generated_at=now,
            excluded_count=excluded
        )
        self._record_decision(result)

        logger.info(f"Generated {len(primary)} primary slot(s) for campaign {request.campaign_id} "
                    f"(urgency={urgency.value}, excluded={excluded}, confidence={performance.confidence_score:.2f})")
        return result

    # Time projection and constraints

    def project_time(self, day_of_week: int, hour: int, tz_name: str,
                     urgency: Urgency, now: datetime) -> datetime:
        """Concrete UTC send time for an abstract weekday/hour under the given urgency."""
        if urgency == Urgency.IMMEDIATE:
            return now + self.immediate_lead
        next_optimal = next_weekday_occurrence(now, day_of_week, hour, tz_name)
        if urgency == Urgency.HIGH:
            return min(next_optimal, now + HIGH_URGENCY_WINDOW)
        return next_optimal

    @staticmethod
    def is_allowed(timestamp: datetime, constraints: Optional[SchedulingConstraints],
                   tz_name: str = 'UTC') -> bool:
        """Check business hours, weekend and blackout constraints in the audience's local time."""
        if not constraints:
            return True
        local = utc_to_local(timestamp, tz_name)
        if constraints.business_hours and not (BUSINESS_HOURS[0] <= local.hour <= BUSINESS_HOURS[1]):
            return False
        if not constraints.weekends_allowed and local.weekday() >= 5:
            return False
        if constraints.blackout_dates and local.date().isoformat() in constraints.blackout_dates:
            return False
        return True

    # Slot construction

    def _slot_from_insight(self, insight: 'TimingInsight', segment: str, audience: TargetAudience,
                           urgency: Urgency, now: datetime) -> ScheduleSlot:
        tz_name = insight.timezone or audience.timezone
        timestamp = self.project_time(insight.day_of_week, insight.hour, tz_name, urgency, now)
        multiplier = self.knowledge_base.seasonal_multiplier(insight, timestamp)
        engagement = (insight.conversion_rate or 0.0) / 100.0 * multiplier
        local = utc_to_local(timestamp, tz_name)

        historical = PerformanceSnapshot(
            open_rate=insight.open_rate or 0.0,
            click_rate=insight.click_rate or 0.0,
            conversion_rate=insight.conversion_rate or 0.0,
            engagement_score=(insight.conversion_rate or 0.0) / 100.0,
            sample_size=insight.sample_size or 0,
            confidence=insight.confidence or 0.0,
            last_updated=ensure_utc(insight.last_updated)
        )
        predicted = PerformanceSnapshot(
            open_rate=historical.open_rate * OPEN_RATE_LIFT * multiplier,
            click_rate=historical.click_rate * CLICK_RATE_LIFT * multiplier,
            conversion_rate=historical.conversion_rate * CONVERSION_RATE_LIFT * multiplier,
            engagement_score=engagement,
            sample_size=historical.sample_size,
            confidence=historical.confidence
        )
        return ScheduleSlot(
            id=str(uuid.uuid4()),
            timestamp=timestamp,
            timezone=tz_name,
            day_of_week=local.weekday(),
            hour=local.hour,
            segment=segment,
            audience_size=audience.size,
            expected_engagement=engagement,
            priority=SlotPriority.PRIMARY,
            historical=historical,
            predicted=predicted
        )

    def _fallback_slot(self, segment: str, audience: TargetAudience, urgency: Urgency,
                       constraints: SchedulingConstraints, now: datetime) -> Optional[ScheduleSlot]:
        """Low-confidence Tuesday 10:00 local slot, pushed forward a week at a time past collisions."""
        tz_name = audience.timezone
        timestamp = self.project_time(FALLBACK_DAY_OF_WEEK, FALLBACK_HOUR, tz_name, urgency, now)
        if not self.is_allowed(timestamp, constraints, tz_name):
            timestamp = next_weekday_occurrence(now, FALLBACK_DAY_OF_WEEK, FALLBACK_HOUR, tz_name)
            for _ in range(FALLBACK_SEARCH_WEEKS):
                if self.is_allowed(timestamp, constraints, tz_name):
                    break
                local = utc_to_local(timestamp, tz_name).replace(tzinfo=None) + timedelta(days=7)
                timestamp = local_to_utc(local, tz_name)
            else:
                logger.warning(f"No default slot for segment {segment} satisfies the constraints")
                return None

        multiplier = self.knowledge_base.seasonal_multiplier(None, timestamp)
        local = utc_to_local(timestamp, tz_name)
        baseline = PerformanceSnapshot(
            open_rate=25.0,
            click_rate=5.0,
            conversion_rate=2.5,
            engagement_score=0.025,
            sample_size=0,
            confidence=FALLBACK_CONFIDENCE
        )
        return ScheduleSlot(
            id=str(uuid.uuid4()),
            timestamp=timestamp,
            timezone=tz_name,
            day_of_week=local.weekday(),
            hour=local.hour,
            segment=segment,
            audience_size=audience.size,
            expected_engagement=baseline.engagement_score * multiplier,
            priority=SlotPriority.FALLBACK,
            historical=baseline,
            predicted=replace(baseline, engagement_score=baseline.engagement_score * multiplier)
        )

    # Ranking and strategies

    @staticmethod
    def _rank_key(slot: ScheduleSlot) -> Tuple:
        return (-slot.expected_engagement, -slot.predicted.confidence, slot.timestamp)

    @staticmethod
    def _dedupe(slots: List[ScheduleSlot]) -> List[ScheduleSlot]:
        seen = set()
        unique = []
        for slot in slots:
            key = (slot.timestamp, slot.segment)
            if key not in seen:
                seen.add(key)
                unique.append(slot)
        return unique

    @staticmethod
    def _cap_per_day(slots: List[ScheduleSlot], constraints: SchedulingConstraints,
                     tz_name: str) -> List[ScheduleSlot]:
        """Keep at most max_sends_per_day slots per local date, preserving order."""
        limit = constraints.max_sends_per_day
        if not limit or limit <= 0:
            return list(slots)
        per_day: Dict[str, int] = {}
        capped = []
        for slot in slots:
            day = utc_to_local(slot.timestamp, tz_name).date().isoformat()
            if per_day.get(day, 0) < limit:
                per_day[day] = per_day.get(day, 0) + 1
                capped.append(slot)
        return capped

    def _alternatives(self, ranked: List[ScheduleSlot], primary: List[ScheduleSlot],
                      constraints: SchedulingConstraints, tz_name: str) -> Dict[str, List[ScheduleSlot]]:
        conservative = [
            slot for slot in ranked
            if slot.historical.sample_size > self.conservative_min_sample_size
            and slot.historical.confidence > CONSERVATIVE_MIN_CONFIDENCE
        ]
        conservative = self._cap_per_day(conservative, constraints, tz_name)[:MAX_PRIMARY_SLOTS]

        experimental = []
        for slot in primary:
            shifted_time = slot.timestamp + AGGRESSIVE_SHIFT
            if not self.is_allowed(shifted_time, constraints, tz_name):
                continue
            local = utc_to_local(shifted_time, slot.timezone)
            experimental.append(replace(
                slot,
                id=str(uuid.uuid4()),
                timestamp=shifted_time,
                day_of_week=local.weekday(),
                hour=local.hour,
                priority=SlotPriority.SECONDARY,
                expected_engagement=slot.expected_engagement * AGGRESSIVE_DISCOUNT,
                predicted=replace(
                    slot.predicted,
                    confidence=slot.predicted.confidence * AGGRESSIVE_DISCOUNT,
                    engagement_score=slot.predicted.engagement_score * AGGRESSIVE_DISCOUNT
                )
            ))
        aggressive = self._cap_per_day(self._dedupe(primary + experimental), constraints, tz_name)

        balanced = self._dedupe([
            replace(slot, id=str(uuid.uuid4()), priority=SlotPriority.FALLBACK)
            for slot in conservative[:3] + aggressive[:2]
        ])
        balanced = self._cap_per_day(balanced, constraints, tz_name)

        return {'conservative': conservative, 'aggressive': aggressive, 'balanced': balanced}

    @staticmethod
    def project_performance(slots: List[ScheduleSlot]) -> PerformanceProjection:
        """Sample-size-weighted predicted rates; confidence saturates at 1000 historical sends."""
        if not slots:
            return PerformanceProjection()

        total_samples = sum(slot.historical.sample_size for slot in slots)
        if total_samples > 0:
            weights = [slot.historical.sample_size / total_samples for slot in slots]
        else:
            weights = [1.0 / len(slots)] * len(slots)

        return PerformanceProjection(
            expected_open_rate=sum(w * s.predicted.open_rate for w, s in zip(weights, slots)),
            expected_click_rate=sum(w * s.predicted.click_rate for w, s in zip(weights, slots)),
            expected_conversion_rate=sum(w * s.predicted.conversion_rate for w, s in zip(weights, slots)),
            confidence_score=min(total_samples / 1000.0, 1.0)
        )

    # Reasoning and audit

    def _reasoning(self, request: SchedulingRequest, primary: List[ScheduleSlot], segment_notes: List[str],
                   excluded: int, performance: PerformanceProjection, now: datetime) -> SchedulingReasoning:
        reasoning = SchedulingReasoning(audience_insights=segment_notes)
        best = primary[0] if primary else None

        if best:
            reasoning.primary_factors.append(
                f"{best.segment} {request.content_type} performs best on "
                f"{calendar.day_name[best.day_of_week]} at {best.hour:02d}:00 {best.timezone} "
                f"({best.historical.conversion_rate:.2f}% conversion over {best.historical.sample_size} sends)"
            )
            reasoning.primary_factors.append(
                f"Urgency '{Urgency(request.urgency).value}' placed the first send at {best.timestamp.isoformat()}"
            )
        else:
            reasoning.primary_factors.append("No slot satisfied the supplied constraints")

        reference = best.timestamp if best else now
        season = season_for(reference)
        multiplier = self.knowledge_base.seasonal_multiplier(None, reference)
        trend = 'above' if multiplier > 1 else 'below' if multiplier < 1 else 'at'
        reasoning.seasonal_factors.append(
            f"{season.title()} multiplier {multiplier:.2f} applied to predicted engagement ({trend} baseline)"
        )

        crowded = [slot for slot in primary if slot.hour in HIGH_COMPETITION_HOURS]
        if crowded:
            reasoning.competitive_analysis.append(
                f"{len(crowded)} slot(s) fall in the crowded 09:00-11:59 inbox window"
            )
        else:
            reasoning.competitive_analysis.append("Selected slots avoid the 09:00-11:59 high-competition window")

        if best:
            reasoning.recommendations.append(f"Test ±1h variants around {best.hour:02d}:00")
        if performance.confidence_score < 0.5:
            reasoning.recommendations.append("Collect more outcome data before committing large budgets")
        if excluded:
            reasoning.recommendations.append(
                f"{excluded} candidate slot(s) were excluded by constraints; relaxing them may improve reach"
            )
        return reasoning

    @staticmethod
    def _optimizations(request: SchedulingRequest) -> List[SchedulingOptimization]:
        optimizations = [
            SchedulingOptimization(
                type='time_shift',
                description='Test sending 1-2 hours earlier/later for segments with lower confidence',
                expected_improvement=0.15,
                confidence=0.7,
                implementation='Create variant schedules with +/- 1 hour shifts'
            ),
            SchedulingOptimization(
                type='audience_split',
                description='Split large audience segments to test different optimal times',
                expected_improvement=0.12,
                confidence=0.8,
                implementation='Divide segments by engagement patterns and test separately'
            ),
        ]
        if request.frequency and request.frequency != 'once':
            optimizations.append(SchedulingOptimization(
                type='frequency_adjust',
                description='Test different send frequencies based on content type and audience',
                expected_improvement=0.08,
                confidence=0.6,
                implementation='A/B test current frequency vs. adjusted frequency'
            ))
        return optimizations

    def _record_decision(self, result: SchedulingResult) -> None:
        if not self.memory_repository or not result.best_slot:
            return
        self.memory_repository.store(
            f"scheduling:decision:{result.campaign_id}",
            {
                'chosen_slot': result.best_slot.to_dict(),
                'reasoning': asdict(result.reasoning),
                'confidence_score': result.performance.confidence_score,
            },
            tags=['scheduling', 'decision', result.campaign_id]
        )
        self.memory_repository.commit()
