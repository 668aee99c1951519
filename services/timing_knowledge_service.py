"""
Timing Knowledge Service
Learns per (audience segment, content type) send-time performance from observed outcomes
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Any, TYPE_CHECKING

from repositories.timing_insight_repository import TimingInsightRepository
from repositories.memory_repository import MemoryRepository
from utils.datetime_utils import utc_now, ensure_utc, utc_to_local, season_for

if TYPE_CHECKING:
    from autopilot_database import TimingInsight

logger = logging.getLogger(__name__)

SEASONAL_MULTIPLIERS = {
    'spring': 1.1,
    'summer': 0.9,
    'fall': 1.2,
    'winter': 0.8,
}


@dataclass
class ObservedPerformance:
    """One batch of observed results. Rates are percentages (0-100)."""
    open_rate: float
    click_rate: float
    conversion_rate: float
    sample_size: int
    confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ObservedPerformance':
        return cls(
            open_rate=float(data.get('open_rate', 0.0)),
            click_rate=float(data.get('click_rate', 0.0)),
            conversion_rate=float(data.get('conversion_rate', 0.0)),
            sample_size=int(data.get('sample_size', 0)),
            confidence=data.get('confidence')
        )


def calculate_confidence(sample_size: int, conversion_rate: float) -> float:
    """Blend of sample size (saturating at 500) and a small conversion bonus (capped at 0.2)."""
    size_factor = min(sample_size / 500.0, 1.0)
    performance_factor = min(conversion_rate / 100.0, 0.2)
    return max(0.0, min(size_factor + performance_factor, 1.0))


class TimingKnowledgeBase:
    """
    Stores, merges and decays timing insights.

    Insights are keyed by segment, content type, weekday and hour. Confidence
    shrinks once per learning cycle and insights under the floor are removed.
    """

    def __init__(self,
                 insight_repository: TimingInsightRepository,
                 memory_repository: Optional[MemoryRepository] = None,
                 decay_factor: float = 0.95,
                 confidence_floor: float = 0.1,
                 learning_cycle_minutes: int = 30,
                 default_timezone: str = 'UTC',
                 clock: Callable[[], datetime] = utc_now):
        self.insight_repository = insight_repository
        self.memory_repository = memory_repository
        self.decay_factor = decay_factor
        self.confidence_floor = confidence_floor
        self.learning_cycle_minutes = learning_cycle_minutes
        self.default_timezone = default_timezone
        self.clock = clock

    def record_outcome(self, segment: str, content_type: str, observed_time: datetime,
                       performance: ObservedPerformance,
                       timezone_name: Optional[str] = None) -> 'TimingInsight':
        """
        Merge an observed outcome into the matching insight, or create one.

        Args:
            segment: Audience segment name
            content_type: Content type, e.g. 'email'
            observed_time: When the content was sent
            performance: Observed rates and sample size
            timezone_name: Timezone the weekday/hour are bucketed in

        Returns:
            The created or updated TimingInsight

        Raises:
            ValueError: If the observation carries no samples
        """
        if isinstance(performance, dict):
            performance = ObservedPerformance.from_dict(performance)
        if performance.sample_size <= 0:
            raise ValueError("Observed performance must have a positive sample_size")

        tz_name = timezone_name or self.default_timezone
        local_time = utc_to_local(observed_time, tz_name)
        day_of_week, hour = local_time.weekday(), local_time.hour
        now = self.clock()

        observed_confidence = performance.confidence
        if observed_confidence is None:
            observed_confidence = calculate_confidence(performance.sample_size, performance.conversion_rate)

        insight = self.insight_repository.find_matching(segment, content_type, day_of_week, hour, tz_name)

        if insight:
            existing_size = insight.sample_size or 0
            weight = performance.sample_size / (existing_size + performance.sample_size)
            insight.open_rate = (insight.open_rate or 0.0) * (1 - weight) + performance.open_rate * weight
            insight.click_rate = (insight.click_rate or 0.0) * (1 - weight) + performance.click_rate * weight
            insight.conversion_rate = (insight.conversion_rate or 0.0) * (1 - weight) + performance.conversion_rate * weight
            insight.sample_size = existing_size + performance.sample_size

            # Only a positive observation may raise confidence
            if performance.conversion_rate > 0:
                insight.confidence = max(insight.confidence or 0.0, observed_confidence)
            insight.confidence = max(0.0, min(insight.confidence or 0.0, 1.0))
            insight.last_updated = now
            logger.debug(f"Merged outcome into insight {insight.id} "
                         f"({segment}/{content_type} day={day_of_week} hour={hour}, weight={weight:.3f})")
        else:
            insight = self.insight_repository.create(
                audience_segment=segment,
                content_type=content_type,
                day_of_week=day_of_week,
                hour=hour,
                timezone=tz_name,
                open_rate=performance.open_rate,
                click_rate=performance.click_rate,
                conversion_rate=performance.conversion_rate,
                confidence=max(0.0, min(observed_confidence, 1.0)),
                sample_size=performance.sample_size,
                seasonal_trends=dict(SEASONAL_MULTIPLIERS),
                last_updated=now
            )
            logger.info(f"Created timing insight for {segment}/{content_type} day={day_of_week} hour={hour}")

        if self.memory_repository:
            self.memory_repository.store(
                f"timing:outcome:{segment}:{content_type}",
                {
                    'segment': segment,
                    'content_type': content_type,
                    'day_of_week': day_of_week,
                    'hour': hour,
                    'observed_time': ensure_utc(observed_time),
                    'performance': vars(performance),
                },
                tags=['timing', 'outcome', segment]
            )

        self.insight_repository.commit()
        return insight

    def cycle_boundary(self, now: datetime) -> datetime:
        """Start of the learning cycle containing `now`."""
        cycle_seconds = self.learning_cycle_minutes * 60
        epoch_seconds = int(ensure_utc(now).timestamp())
        return datetime.fromtimestamp(epoch_seconds - epoch_seconds % cycle_seconds, tz=timezone.utc)

    def decay_and_prune(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply confidence decay up to the current cycle boundary and prune weak insights.

        Elapsed time is measured from the later of last_updated and the last
        boundary already applied, so a second call within the same cycle is a no-op.

        Returns:
            Summary dict with decayed and pruned counts and the cycle boundary
        """
        boundary = self.cycle_boundary(now or self.clock())
        decayed = 0
        pruned = 0

        for insight in self.insight_repository.get_all():
            reference = ensure_utc(insight.last_updated) or boundary
            decayed_at = ensure_utc(insight.decayed_at)
            if decayed_at and decayed_at > reference:
                reference = decayed_at

            elapsed_days = (boundary - reference).total_seconds() / 86400.0
            if elapsed_days > 0:
                insight.confidence = max(0.0, (insight.confidence or 0.0) * (self.decay_factor ** elapsed_days))
                decayed += 1
            if decayed_at is None or boundary > decayed_at:
                insight.decayed_at = boundary

            if (insight.confidence or 0.0) < self.confidence_floor:
                logger.info(f"Pruning timing insight {insight.id} "
                            f"({insight.audience_segment}/{insight.content_type}) confidence={insight.confidence:.3f}")
                self.insight_repository.delete(insight)
                pruned += 1

        self.insight_repository.commit()
        logger.info(f"Learning cycle {boundary.isoformat()}: decayed={decayed} pruned={pruned}")
        return {'decayed': decayed, 'pruned': pruned, 'cycle': boundary.isoformat()}

    def top_insights(self, segment: str, content_type: str,
                     min_confidence: float = 0.0) -> List['TimingInsight']:
        """Insights with confidence >= min_confidence, best conversion first, larger sample on ties."""
        return self.insight_repository.get_top_insights(segment, content_type, min_confidence)

    def seasonal_multiplier(self, insight: Optional['TimingInsight'] = None,
                            at: Optional[datetime] = None) -> float:
        """Read-time multiplier for the season of `at`; stored averages are never adjusted."""
        season = season_for(ensure_utc(at or self.clock()))
        trends = (insight.seasonal_trends if insight is not None else None) or SEASONAL_MULTIPLIERS
        return float(trends.get(season, 1.0))

    def summarize(self) -> Dict[str, Any]:
        """Counts and average confidence per segment for the status surface."""
        insights = self.insight_repository.get_all()
        segments: Dict[str, Dict[str, Any]] = {}
        for insight in insights:
            entry = segments.setdefault(insight.audience_segment, {'insights': 0, 'total_confidence': 0.0})
            entry['insights'] += 1
            entry['total_confidence'] += insight.confidence or 0.0

        return {
            'total_insights': len(insights),
            'seasonal_multiplier': self.seasonal_multiplier(),
            'segments': {
                name: {
                    'insights': entry['insights'],
                    'average_confidence': round(entry['total_confidence'] / entry['insights'], 4)
                }
                for name, entry in segments.items()
            }
        }
