"""
Tests for TimingKnowledgeBase - outcome merging, decay, pruning and ranking
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from services.timing_knowledge_service import (
    TimingKnowledgeBase, ObservedPerformance, calculate_confidence, SEASONAL_MULTIPLIERS
)

# Tuesday 10:00 UTC
TUESDAY_10 = datetime(2025, 3, 4, 10, 0, tzinfo=timezone.utc)


def performance(conversion_rate, sample_size=100, open_rate=25.0, click_rate=5.0):
    return ObservedPerformance(
        open_rate=open_rate,
        click_rate=click_rate,
        conversion_rate=conversion_rate,
        sample_size=sample_size
    )


class TestRecordOutcome:
    """Merging observed outcomes into insights"""

    def test_first_outcome_creates_insight_for_local_slot(self, knowledge_base):
        insight = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(2.0))

        assert insight.id is not None
        assert insight.audience_segment == 'power_users'
        assert insight.content_type == 'email'
        assert insight.day_of_week == 1
        assert insight.hour == 10
        assert insight.sample_size == 100
        assert insight.conversion_rate == pytest.approx(2.0)
        assert insight.seasonal_trends == SEASONAL_MULTIPLIERS

    def test_weighted_merge_of_three_outcomes(self, knowledge_base, insight_repository):
        """2%, 3% and 4% over equal samples merge to 3% over the combined sample"""
        for rate in (2.0, 3.0, 4.0):
            knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(rate))

        insights = insight_repository.get_all()
        assert len(insights) == 1
        assert insights[0].conversion_rate == pytest.approx(3.0)
        assert insights[0].sample_size == 300

    def test_slot_is_bucketed_in_the_audience_timezone(self, knowledge_base):
        # 10:00 UTC on a Tuesday is 05:00 in New York
        insight = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(2.0),
                                                timezone_name='America/New_York')

        assert insight.day_of_week == 1
        assert insight.hour == 5
        assert insight.timezone == 'America/New_York'

    def test_same_local_hour_in_two_timezones_stays_separate(self, knowledge_base, insight_repository):
        # Tuesday 10:00 in New York is 15:00 UTC
        new_york_10 = datetime(2025, 3, 4, 15, 0, tzinfo=timezone.utc)
        knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(2.0))
        knowledge_base.record_outcome('power_users', 'email', new_york_10, performance(8.0),
                                      timezone_name='America/New_York')

        utc_insight = insight_repository.find_matching('power_users', 'email', 1, 10, 'UTC')
        new_york_insight = insight_repository.find_matching('power_users', 'email', 1, 10, 'America/New_York')

        assert len(insight_repository.get_all()) == 2
        assert utc_insight.sample_size == 100
        assert utc_insight.conversion_rate == pytest.approx(2.0)
        assert new_york_insight.sample_size == 100
        assert new_york_insight.conversion_rate == pytest.approx(8.0)

    def test_zero_conversion_never_raises_confidence(self, knowledge_base):
        first = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10,
                                              performance(1.0, sample_size=50))
        before = first.confidence

        merged = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10,
                                               performance(0.0, sample_size=5000))

        assert merged.confidence == pytest.approx(before)
        assert merged.sample_size == 5050

    def test_rejects_empty_sample(self, knowledge_base):
        with pytest.raises(ValueError):
            knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(2.0, sample_size=0))

    def test_accepts_plain_dict(self, knowledge_base):
        insight = knowledge_base.record_outcome('new_users', 'email', TUESDAY_10, {
            'open_rate': 30.0, 'click_rate': 6.0, 'conversion_rate': 2.5, 'sample_size': 200
        })

        assert insight.sample_size == 200
        assert insight.open_rate == pytest.approx(30.0)

    def test_outcome_is_written_to_memory_log(self, knowledge_base, memory_repository):
        knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(2.0))

        entry = memory_repository.get_latest('timing:outcome:power_users:email')
        assert entry is not None
        assert entry.value['hour'] == 10
        assert entry.value['performance']['sample_size'] == 100


class TestCalculateConfidence:

    def test_saturates_at_one(self):
        assert calculate_confidence(5000, 50.0) == 1.0

    def test_small_sample_is_low_confidence(self):
        assert calculate_confidence(50, 0.0) == pytest.approx(0.1)

    def test_conversion_bonus_is_capped(self):
        assert calculate_confidence(0, 90.0) == pytest.approx(0.2)


class TestDecayAndPrune:
    """Confidence decay per learning cycle"""

    def test_decay_applies_elapsed_days(self, knowledge_base, clock):
        insight = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10,
                                                performance(2.0, sample_size=400))
        insight.confidence = 0.8

        clock.advance(days=1)
        result = knowledge_base.decay_and_prune()

        assert result['decayed'] == 1
        assert result['pruned'] == 0
        assert insight.confidence == pytest.approx(0.8 * 0.95)

    def test_second_run_in_same_cycle_is_a_no_op(self, knowledge_base, clock):
        insight = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10,
                                                performance(2.0, sample_size=400))
        insight.confidence = 0.8

        clock.advance(days=2)
        knowledge_base.decay_and_prune()
        after_first = insight.confidence
        clock.advance(minutes=10)
        second = knowledge_base.decay_and_prune()

        assert second['decayed'] == 0
        assert insight.confidence == pytest.approx(after_first)

    def test_confidence_never_increases(self, knowledge_base, clock):
        insight = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10,
                                                performance(2.0, sample_size=400))
        previous = insight.confidence

        for _ in range(5):
            clock.advance(hours=7)
            knowledge_base.decay_and_prune()
            assert insight.confidence <= previous
            previous = insight.confidence

    def test_insights_below_floor_are_pruned(self, knowledge_base, insight_repository, clock):
        insight = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10,
                                                performance(2.0, sample_size=400))
        insight.confidence = 0.12

        clock.advance(days=10)
        result = knowledge_base.decay_and_prune()

        assert result['pruned'] == 1
        assert insight_repository.get_all() == []

    def test_cycle_boundary_is_aligned_to_cycle_length(self, knowledge_base):
        boundary = knowledge_base.cycle_boundary(datetime(2025, 3, 4, 8, 47, 12, tzinfo=timezone.utc))

        assert boundary == datetime(2025, 3, 4, 8, 30, tzinfo=timezone.utc)


class TestQueries:

    def test_top_insights_ordered_by_conversion_then_sample(self, knowledge_base):
        knowledge_base.record_outcome('power_users', 'email',
                                      datetime(2025, 3, 4, 9, 0, tzinfo=timezone.utc), performance(3.0, 100))
        knowledge_base.record_outcome('power_users', 'email',
                                      datetime(2025, 3, 5, 14, 0, tzinfo=timezone.utc), performance(3.0, 400))
        knowledge_base.record_outcome('power_users', 'email',
                                      datetime(2025, 3, 6, 11, 0, tzinfo=timezone.utc), performance(5.0, 100))

        top = knowledge_base.top_insights('power_users', 'email')

        assert [(i.day_of_week, i.hour) for i in top] == [(3, 11), (2, 14), (1, 9)]

    def test_top_insights_respects_min_confidence(self, knowledge_base):
        knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(1.0, sample_size=10))

        assert knowledge_base.top_insights('power_users', 'email', min_confidence=0.5) == []

    def test_seasonal_multiplier_uses_clock_season(self, knowledge_base):
        assert knowledge_base.seasonal_multiplier() == pytest.approx(SEASONAL_MULTIPLIERS['spring'])
        assert knowledge_base.seasonal_multiplier(
            at=datetime(2025, 10, 1, tzinfo=timezone.utc)) == pytest.approx(SEASONAL_MULTIPLIERS['fall'])

    def test_summarize_groups_by_segment(self, knowledge_base):
        knowledge_base.record_outcome('power_users', 'email', TUESDAY_10, performance(2.0))
        knowledge_base.record_outcome('new_users', 'email', TUESDAY_10, performance(2.0))

        summary = knowledge_base.summarize()

        assert summary['total_insights'] == 2
        assert set(summary['segments']) == {'power_users', 'new_users'}
        assert summary['segments']['power_users']['insights'] == 1


class TestWithMockRepository:
    """Merge arithmetic without a database"""

    def test_merge_updates_existing_insight_in_place(self):
        existing = Mock(id=1, sample_size=100, open_rate=20.0, click_rate=4.0,
                        conversion_rate=2.0, confidence=0.3)
        repository = Mock()
        repository.find_matching.return_value = existing
        knowledge_base = TimingKnowledgeBase(insight_repository=repository,
                                             clock=lambda: TUESDAY_10)

        result = knowledge_base.record_outcome('power_users', 'email', TUESDAY_10,
                                               performance(4.0, sample_size=100, open_rate=30.0))

        assert result is existing
        assert existing.conversion_rate == pytest.approx(3.0)
        assert existing.open_rate == pytest.approx(25.0)
        assert existing.sample_size == 200
        repository.create.assert_not_called()
        repository.commit.assert_called_once()
