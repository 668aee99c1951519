"""
Tests for TimingInsightRepository against the test database
"""

from autopilot_database import TimingInsight


def add_insight(session, **kwargs):
    values = {
        'audience_segment': 'general',
        'content_type': 'email',
        'day_of_week': 1,
        'hour': 10,
        'conversion_rate': 2.0,
        'confidence': 0.5,
        'sample_size': 100,
    }
    values.update(kwargs)
    insight = TimingInsight(**values)
    session.add(insight)
    session.flush()
    return insight


class TestTimingInsightRepository:

    def test_find_matching_exact_slot(self, insight_repository, db_session):
        target = add_insight(db_session, day_of_week=3, hour=14)
        add_insight(db_session, day_of_week=3, hour=15)

        assert insight_repository.find_matching('general', 'email', 3, 14) is target
        assert insight_repository.find_matching('general', 'sms', 3, 14) is None

    def test_find_matching_keys_on_timezone(self, insight_repository, db_session):
        utc = add_insight(db_session, day_of_week=1, hour=10, timezone='UTC')
        new_york = add_insight(db_session, day_of_week=1, hour=10, timezone='America/New_York')

        assert insight_repository.find_matching('general', 'email', 1, 10) is utc
        assert insight_repository.find_matching('general', 'email', 1, 10, 'America/New_York') is new_york
        assert insight_repository.find_matching('general', 'email', 1, 10, 'Europe/Paris') is None

    def test_top_insights_order_and_floor(self, insight_repository, db_session):
        add_insight(db_session, hour=9, conversion_rate=3.0, sample_size=50)
        add_insight(db_session, hour=10, conversion_rate=3.0, sample_size=400)
        add_insight(db_session, hour=11, conversion_rate=4.0, confidence=0.05)
        add_insight(db_session, hour=12, conversion_rate=1.0)

        top = insight_repository.get_top_insights('general', 'email', min_confidence=0.1)

        assert [i.hour for i in top] == [10, 9, 12]

    def test_segments_are_distinct(self, insight_repository, db_session):
        add_insight(db_session, audience_segment='vip')
        add_insight(db_session, audience_segment='vip', hour=11)
        add_insight(db_session, audience_segment='trial')

        assert sorted(insight_repository.get_segments()) == ['trial', 'vip']
