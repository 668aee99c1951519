"""
Tests for ScheduleGenerator - slot projection, constraints, fallbacks and strategies
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from services.enums import Urgency, SlotPriority
from services.schedule_generator_service import (
    ScheduleGenerator, SchedulingRequest, SchedulingConstraints, TargetAudience,
    FALLBACK_CONFIDENCE
)
from services.timing_knowledge_service import ObservedPerformance
from utils.datetime_utils import utc_to_local


def seed_insight(knowledge_base, when, conversion_rate, sample_size=400, segment='power_users'):
    return knowledge_base.record_outcome(segment, 'email', when, ObservedPerformance(
        open_rate=25.0, click_rate=5.0, conversion_rate=conversion_rate, sample_size=sample_size
    ))


def request(urgency=Urgency.MEDIUM, constraints=None, segments=None, tz='UTC', frequency='once'):
    return SchedulingRequest(
        campaign_id='camp-1',
        target_audience=TargetAudience(segments=segments or ['power_users'], timezone=tz, size=1000),
        content_type='email',
        urgency=urgency,
        constraints=constraints,
        frequency=frequency
    )


class TestGenerate:

    def test_best_slot_is_next_occurrence_of_best_insight(self, schedule_generator, knowledge_base, clock):
        # Thursday 14:00 converts best
        seed_insight(knowledge_base, datetime(2025, 3, 6, 14, 0, tzinfo=timezone.utc), 5.0)
        seed_insight(knowledge_base, datetime(2025, 3, 4, 9, 0, tzinfo=timezone.utc), 2.0)

        result = schedule_generator.generate(request())

        best = result.best_slot
        assert best.timestamp == datetime(2025, 3, 6, 14, 0, tzinfo=timezone.utc)
        assert best.priority == SlotPriority.PRIMARY
        assert best.timestamp > clock()
        assert len(result.primary) == 2

    def test_immediate_urgency_sends_within_an_hour(self, schedule_generator, knowledge_base, clock):
        seed_insight(knowledge_base, datetime(2025, 3, 7, 15, 0, tzinfo=timezone.utc), 4.0)

        result = schedule_generator.generate(request(urgency=Urgency.IMMEDIATE))

        assert clock() < result.best_slot.timestamp <= clock() + timedelta(hours=1)

    def test_high_urgency_caps_wait_at_six_hours(self, schedule_generator, knowledge_base, clock):
        seed_insight(knowledge_base, datetime(2025, 3, 7, 15, 0, tzinfo=timezone.utc), 4.0)

        result = schedule_generator.generate(request(urgency=Urgency.HIGH))

        assert result.best_slot.timestamp == clock() + timedelta(hours=6)

    def test_no_history_falls_back_to_tuesday_ten(self, schedule_generator, clock):
        result = schedule_generator.generate(request())

        best = result.best_slot
        assert best.priority == SlotPriority.FALLBACK
        assert best.predicted.confidence == pytest.approx(FALLBACK_CONFIDENCE)
        local = utc_to_local(best.timestamp, 'UTC')
        assert (local.weekday(), local.hour) == (1, 10)
        assert any('no timing history' in note for note in result.reasoning.audience_insights)

    def test_constraints_are_never_violated(self, schedule_generator, knowledge_base):
        # Saturday 20:00 and Wednesday 11:00
        seed_insight(knowledge_base, datetime(2025, 3, 8, 20, 0, tzinfo=timezone.utc), 6.0)
        seed_insight(knowledge_base, datetime(2025, 3, 5, 11, 0, tzinfo=timezone.utc), 3.0)
        constraints = SchedulingConstraints(business_hours=True, weekends_allowed=False)

        result = schedule_generator.generate(request(constraints=constraints))

        all_slots = result.primary + [slot for slots in result.alternatives.values() for slot in slots]
        assert all_slots
        for slot in all_slots:
            assert ScheduleGenerator.is_allowed(slot.timestamp, constraints, 'UTC')
        assert result.excluded_count == 1

    def test_fallback_skips_blackout_dates(self, schedule_generator):
        constraints = SchedulingConstraints(blackout_dates=['2025-03-04', '2025-03-11'])

        result = schedule_generator.generate(request(constraints=constraints))

        assert result.best_slot.timestamp.date().isoformat() == '2025-03-18'

    def test_max_sends_per_day_caps_primary(self, schedule_generator, knowledge_base):
        for hour in (12, 14, 16):
            seed_insight(knowledge_base, datetime(2025, 3, 5, hour, 0, tzinfo=timezone.utc), 3.0 + hour / 10)
        constraints = SchedulingConstraints(max_sends_per_day=1)

        result = schedule_generator.generate(request(constraints=constraints))

        assert len(result.primary) == 1
        assert result.primary[0].hour == 16

    def test_seasonal_multiplier_scales_expected_engagement(self, schedule_generator, knowledge_base):
        seed_insight(knowledge_base, datetime(2025, 3, 5, 11, 0, tzinfo=timezone.utc), 4.0)

        slot = schedule_generator.generate(request()).best_slot

        # March is spring (1.1)
        assert slot.expected_engagement == pytest.approx(0.04 * 1.1)
        assert slot.historical.conversion_rate == pytest.approx(4.0)

    def test_decision_is_recorded_in_memory(self, schedule_generator, memory_repository):
        schedule_generator.generate(request())

        entry = memory_repository.get_latest('scheduling:decision:camp-1')
        assert entry is not None
        assert 'chosen_slot' in entry.value


class TestAlternatives:

    def test_conservative_requires_large_confident_samples(self, schedule_generator, knowledge_base):
        seed_insight(knowledge_base, datetime(2025, 3, 5, 11, 0, tzinfo=timezone.utc), 4.0, sample_size=900)
        seed_insight(knowledge_base, datetime(2025, 3, 6, 11, 0, tzinfo=timezone.utc), 5.0, sample_size=120)

        alternatives = schedule_generator.generate(request()).alternatives

        assert [slot.day_of_week for slot in alternatives['conservative']] == [2]

    def test_aggressive_adds_shifted_discounted_variants(self, schedule_generator, knowledge_base):
        seed_insight(knowledge_base, datetime(2025, 3, 5, 11, 0, tzinfo=timezone.utc), 4.0)

        result = schedule_generator.generate(request())
        aggressive = result.alternatives['aggressive']

        assert len(aggressive) == 2
        shifted = [slot for slot in aggressive if slot.priority == SlotPriority.SECONDARY][0]
        assert shifted.timestamp == result.best_slot.timestamp + timedelta(hours=2)
        assert shifted.predicted.confidence == pytest.approx(result.best_slot.predicted.confidence * 0.9)

    def test_balanced_is_built_from_other_strategies(self, schedule_generator, knowledge_base):
        seed_insight(knowledge_base, datetime(2025, 3, 5, 11, 0, tzinfo=timezone.utc), 4.0, sample_size=900)

        alternatives = schedule_generator.generate(request()).alternatives

        assert alternatives['balanced']
        assert all(slot.priority == SlotPriority.FALLBACK for slot in alternatives['balanced'])


class TestProjection:

    def test_projection_is_sample_weighted(self):
        slots = [
            Mock(historical=Mock(sample_size=300), predicted=Mock(open_rate=20.0, click_rate=4.0,
                                                                  conversion_rate=2.0)),
            Mock(historical=Mock(sample_size=100), predicted=Mock(open_rate=40.0, click_rate=8.0,
                                                                  conversion_rate=6.0)),
        ]

        projection = ScheduleGenerator.project_performance(slots)

        assert projection.expected_conversion_rate == pytest.approx(3.0)
        assert projection.expected_open_rate == pytest.approx(25.0)
        assert projection.confidence_score == pytest.approx(0.4)

    def test_empty_projection(self):
        projection = ScheduleGenerator.project_performance([])

        assert projection.confidence_score == 0.0

    def test_recurring_requests_get_frequency_optimization(self, schedule_generator):
        result = schedule_generator.generate(request(frequency='weekly'))

        assert 'frequency_adjust' in [opt.type for opt in result.optimizations]

    def test_to_dict_is_serialisable(self, schedule_generator):
        data = schedule_generator.generate(request()).to_dict()

        assert data['campaign_id'] == 'camp-1'
        assert isinstance(data['primary'][0]['timestamp'], str)
        assert set(data['alternatives']) == {'conservative', 'aggressive', 'balanced'}
