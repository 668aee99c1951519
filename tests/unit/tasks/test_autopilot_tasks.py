"""
Tests for the autopilot Celery tasks
Tasks are run eagerly with apply() against a mocked worker app and service registry
"""

import pytest
from unittest.mock import Mock, patch

from services.exceptions import CollaboratorError, NotFoundError
from services.registry import ServiceRegistry
from tasks.autopilot_tasks import (
    coordinator_tick,
    process_due_schedules,
    run_learning_cycle,
    run_replay_cycle,
    trigger_replay,
    record_replay_analytics
)


@pytest.fixture
def mock_app_context():
    """Mock Flask app context for Celery tasks"""
    with patch('tasks.autopilot_tasks.flask_app') as mock_app:
        mock_context = Mock()
        mock_context.__enter__ = Mock(return_value=mock_context)
        mock_context.__exit__ = Mock(return_value=None)
        mock_app.app_context.return_value = mock_context

        mock_services = Mock()
        mock_app.services = mock_services

        yield mock_app, mock_services


def register(mock_services, **services):
    mock_services.get.side_effect = lambda name: services[name]


class TestCoordinatorTasks:

    def test_coordinator_tick(self, mock_app_context):
        _, mock_services = mock_app_context
        coordinator = Mock()
        coordinator.tick.return_value = {'resumed': 2, 'completed': 1}
        register(mock_services, campaign_coordinator=coordinator)

        result = coordinator_tick.apply()

        assert result.successful()
        assert result.result['success'] is True
        assert result.result['summary'] == {'resumed': 2, 'completed': 1}
        assert 'timestamp' in result.result

    def test_process_due_schedules(self, mock_app_context):
        _, mock_services = mock_app_context
        coordinator = Mock()
        coordinator.process_due.return_value = {'due': 3, 'launched': 2, 'deferred': 1, 'failed': 0}
        register(mock_services, campaign_coordinator=coordinator)

        result = process_due_schedules.apply()

        assert result.result['success'] is True
        assert result.result['summary']['deferred'] == 1

    def test_ticks_share_one_coordinator(self, mock_app_context):
        mock_app, _ = mock_app_context
        created = []

        def build_coordinator():
            coordinator = Mock()
            coordinator.tick.return_value = {'resumed': 0}
            coordinator.process_due.return_value = {'due': 0, 'launched': 0, 'deferred': 0, 'failed': 0}
            created.append(coordinator)
            return coordinator

        mock_app.services = ServiceRegistry()
        mock_app.services.register_singleton('campaign_coordinator', build_coordinator)

        coordinator_tick.apply()
        process_due_schedules.apply()
        coordinator_tick.apply()

        assert len(created) == 1
        assert created[0].tick.call_count == 2
        created[0].process_due.assert_called_once()

    def test_errors_are_reported_not_raised(self, mock_app_context):
        _, mock_services = mock_app_context
        mock_services.get.side_effect = ValueError("Service 'campaign_coordinator' is not registered")

        result = coordinator_tick.apply()

        assert result.successful()
        assert result.result['success'] is False
        assert 'not registered' in result.result['error']


class TestLearningCycleTask:

    def test_run_learning_cycle(self, mock_app_context):
        _, mock_services = mock_app_context
        knowledge_base = Mock()
        knowledge_base.decay_and_prune.return_value = {'decayed': 12, 'pruned': 3, 'cycle': '2025-03-04T08:00:00+00:00'}
        register(mock_services, timing_knowledge_base=knowledge_base)

        result = run_learning_cycle.apply()

        assert result.result == {'success': True, 'decayed': 12, 'pruned': 3,
                                 'cycle': '2025-03-04T08:00:00+00:00'}


class TestReplayTasks:

    def test_run_replay_cycle(self, mock_app_context):
        _, mock_services = mock_app_context
        engine = Mock()
        engine.run_cycle.return_value = {'opportunities': 1, 'replayed': 1}
        register(mock_services, pattern_replay_engine=engine)

        result = run_replay_cycle.apply()

        assert result.result['success'] is True
        assert result.result['summary']['replayed'] == 1

    def test_trigger_replay(self, mock_app_context):
        _, mock_services = mock_app_context
        engine = Mock()
        engine.trigger_manual_replay.return_value = Mock(id=5, status='running')
        register(mock_services, pattern_replay_engine=engine)

        result = trigger_replay.apply(args=['pattern-1'], kwargs={'overrides': {'budget_allocation': 500.0}})

        assert result.result == {'success': True, 'replay_id': 5, 'status': 'running'}
        engine.trigger_manual_replay.assert_called_once_with('pattern-1', {'budget_allocation': 500.0})

    def test_trigger_replay_unknown_pattern(self, mock_app_context):
        _, mock_services = mock_app_context
        engine = Mock()
        engine.trigger_manual_replay.side_effect = NotFoundError('Pattern missing not found')
        register(mock_services, pattern_replay_engine=engine)

        result = trigger_replay.apply(args=['missing'])

        assert result.successful()
        assert result.result == {'success': False, 'error': 'Pattern missing not found'}
        assert engine.trigger_manual_replay.call_count == 1

    def test_trigger_replay_retries_collaborator_failures(self, mock_app_context):
        _, mock_services = mock_app_context
        engine = Mock()
        engine.trigger_manual_replay.side_effect = CollaboratorError('Brand service down')
        register(mock_services, pattern_replay_engine=engine)

        result = trigger_replay.apply(args=['pattern-1'])

        assert not result.successful()
        assert 'Brand service down' in str(result.result)
        assert engine.trigger_manual_replay.call_count == 4

    def test_record_replay_analytics(self, mock_app_context):
        _, mock_services = mock_app_context
        engine = Mock()
        engine.get_analytics.return_value = {'total_replays': 4, 'success_rate': 0.75}
        memory = Mock()
        register(mock_services, pattern_replay_engine=engine, memory_repository=memory)

        result = record_replay_analytics.apply(kwargs={'days': 7})

        assert result.result == {'success': True, 'total_replays': 4, 'success_rate': 0.75}
        engine.get_analytics.assert_called_once_with(days=7)
        key, value, tags = memory.store.call_args[0]
        assert key.startswith('replay:analytics:')
        assert tags == ['replay', 'analytics']
        memory.commit.assert_called_once()
