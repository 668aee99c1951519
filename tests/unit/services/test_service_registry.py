"""
Tests for the ServiceRegistry lifecycles and dependency resolution
"""

import pytest
from unittest.mock import Mock

from services.registry import ServiceRegistry, ServiceLifecycle


@pytest.fixture
def registry():
    return ServiceRegistry()


class TestRegistration:

    def test_register_instance(self, registry):
        service = Mock()
        registry.register('memory', service)

        assert registry.has('memory')
        assert registry.get('memory') is service

    def test_register_none_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register('memory', None)

    def test_unknown_service(self, registry):
        with pytest.raises(ValueError, match="Service 'missing' is not registered"):
            registry.get('missing')


class TestLifecycles:

    def test_singleton_created_once(self, registry):
        factory = Mock(side_effect=lambda: object())
        registry.register_singleton('executor', factory)

        assert registry.get('executor') is registry.get('executor')
        assert factory.call_count == 1

    def test_transient_created_each_time(self, registry):
        registry.register_factory('clock', lambda: object(), lifecycle=ServiceLifecycle.TRANSIENT)

        assert registry.get('clock') is not registry.get('clock')

    def test_scoped_per_scope_id(self, registry):
        registry.register_factory('db_session', lambda: object(), lifecycle=ServiceLifecycle.SCOPED)

        first = registry.get('db_session', scope_id='a')
        assert registry.get('db_session', scope_id='a') is first
        assert registry.get('db_session', scope_id='b') is not first

        registry.clear_scope('a')
        assert registry.get('db_session', scope_id='a') is not first

    def test_reset_service(self, registry):
        registry.register_singleton('knowledge', lambda: object())
        first = registry.get('knowledge')

        registry.reset_service('knowledge')

        assert registry.get('knowledge') is not first


class TestDependencies:

    def test_dependencies_are_injected_by_name(self, registry):
        registry.register('db_session', 'session')
        registry.register_factory('repository', lambda db_session: {'session': db_session},
                                  dependencies=['db_session'])

        assert registry.get('repository') == {'session': 'session'}

    def test_circular_dependency_detected(self, registry):
        registry.register_factory('a', lambda b: b, dependencies=['b'])
        registry.register_factory('b', lambda a: a, dependencies=['a'])

        with pytest.raises(RuntimeError, match='Circular dependency detected'):
            registry.get('a')
        with pytest.raises(RuntimeError):
            registry.get_initialization_order()

    def test_validate_dependencies(self, registry):
        registry.register_factory('coordinator', lambda executor: None, dependencies=['executor'])

        assert registry.validate_dependencies() == [
            "Service 'coordinator' depends on unregistered service 'executor'"
        ]

    def test_initialization_order_and_warmup(self, registry):
        created = []
        registry.register_factory('generator', lambda knowledge: created.append('generator'),
                                  dependencies=['knowledge'])
        registry.register_factory('knowledge', lambda: created.append('knowledge') or 'kb')

        order = registry.get_initialization_order()
        assert order.index('knowledge') < order.index('generator')

        registry.warmup()
        assert created == ['knowledge', 'generator']


class TestApplicationRegistry:

    def test_app_registry_is_complete(self, app):
        assert app.services.validate_dependencies() == []
        for name in ('timing_knowledge_base', 'schedule_generator', 'campaign_coordinator',
                     'pattern_replay_engine'):
            assert app.services.has(name)
