# tests/integration/routes/test_autopilot_routes.py
"""
Integration tests for the autopilot JSON routes.
Routes resolve services from the registry, which binds to the test session.
"""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

from autopilot_database import CampaignSchedule, ReplayExecution, TimingInsight


class TestHealth:

    def test_health_reports_database(self, client, db_session):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy', 'service': 'campaign-autopilot',
                                       'database': 'connected'}


class TestCampaignRoutes:

    def test_status_lists_pending_schedules(self, app, client, db_session):
        db_session.add(CampaignSchedule(campaign_id='camp-1', scheduled_time=datetime(2030, 1, 1, 9),
                                        spec_payload={'goal': 'engagement'}))
        db_session.flush()

        response = client.get('/autopilot/status')

        assert response.status_code == 200
        data = response.get_json()
        assert [s['campaign_id'] for s in data['scheduled']] == ['camp-1']
        assert data['statistics']['total_running'] == 0
        assert data['statistics']['capacity'] == app.config['MAX_CONCURRENT_CAMPAIGNS']

    def test_schedule_info(self, client, db_session):
        schedule = CampaignSchedule(campaign_id='camp-2', scheduled_time=datetime(2030, 1, 1, 9),
                                    priority='high', recurrence_interval='weekly',
                                    spec_payload={'goal': 'engagement'})
        db_session.add(schedule)
        db_session.flush()

        response = client.get(f'/autopilot/schedules/{schedule.id}')

        assert response.status_code == 200
        data = response.get_json()
        assert data['priority'] == 'high'
        assert data['recurrence'] == {'interval': 'weekly', 'end_date': None}
        assert data['scheduled_time'] == '2030-01-01T09:00:00+00:00'

    def test_unknown_schedule_is_404(self, client, db_session):
        response = client.get('/autopilot/schedules/999999')

        assert response.status_code == 404
        assert response.get_json()['success'] is False

    @patch('routes.autopilot_routes.current_app')
    def test_status_failure_is_500(self, mock_current_app, client):
        coordinator = Mock()
        coordinator.get_campaign_status.side_effect = RuntimeError('database unavailable')
        mock_current_app.services.get.return_value = coordinator

        response = client.get('/autopilot/status')

        assert response.status_code == 500
        assert response.get_json() == {'success': False, 'error': 'Failed to load campaign status'}


class TestReplayRoutes:

    def test_replay_status(self, client, db_session):
        replay = ReplayExecution(pattern_id='pattern-1', status='completed', predicted_roi=2.0,
                                 actual_roi=2.4, variance=0.2, created_at=datetime(2030, 1, 1))
        db_session.add(replay)
        db_session.flush()

        response = client.get(f'/autopilot/replays/{replay.id}')

        assert response.status_code == 200
        data = response.get_json()
        assert data['pattern_id'] == 'pattern-1'
        assert data['performance']['actual_roi'] == 2.4

    def test_unknown_replay_is_404(self, client, db_session):
        assert client.get('/autopilot/replays/424242').status_code == 404

    def test_analytics_default_window(self, client, db_session):
        response = client.get('/autopilot/replays/analytics')

        assert response.status_code == 200
        assert response.get_json()['window_days'] == 30

    def test_analytics_rejects_out_of_range_window(self, client, db_session):
        for days in (0, 366):
            response = client.get(f'/autopilot/replays/analytics?days={days}')
            assert response.status_code == 400
            assert 'days must be between 1 and 365' in response.get_json()['error']


class TestInsightRoutes:

    def test_insights_summary(self, client, db_session):
        for hour, confidence in ((9, 0.4), (14, 0.8)):
            db_session.add(TimingInsight(audience_segment='vip', content_type='email', day_of_week=1,
                                         hour=hour, confidence=confidence, sample_size=100,
                                         last_updated=datetime(2025, 3, 1, tzinfo=timezone.utc)))
        db_session.flush()

        response = client.get('/autopilot/insights')

        data = response.get_json()
        assert data['total_insights'] == 2
        assert data['segments']['vip'] == {'insights': 2, 'average_confidence': 0.6}
        assert 'seasonal_multiplier' in data


class TestErrorHandlers:

    def test_unknown_path_returns_json_404(self, client):
        response = client.get('/autopilot/nothing-here')

        assert response.status_code == 404
        assert response.get_json() == {'success': False, 'error': 'Not found'}
