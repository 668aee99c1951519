# tests/conftest.py
"""
Shared fixtures for the pytest test suite.

Service-level tests run against real repositories on an in-memory SQLite
database. Each test gets its own transaction, which is rolled back afterwards,
and the service registry is reset so services pick up the test session.
"""
import os

os.environ['FLASK_ENV'] = 'testing'

import pytest

from app import create_app
from extensions import db
from repositories.campaign_execution_repository import CampaignExecutionRepository
from repositories.campaign_pattern_repository import CampaignPatternRepository
from repositories.campaign_schedule_repository import CampaignScheduleRepository
from repositories.memory_repository import MemoryRepository
from repositories.replay_execution_repository import ReplayExecutionRepository
from repositories.timing_insight_repository import TimingInsightRepository
from services.campaign_execution_service import CampaignExecutionCoordinator
from services.collaborators import PatternPlanGenerator, SimulatedBrandAnalyzer, SimulatedContentGenerator
from services.pattern_replay_service import PatternReplayEngine, ReplayConfig
from services.schedule_generator_service import ScheduleGenerator
from services.step_executor import SimulatedStepExecutor
from services.timing_knowledge_service import TimingKnowledgeBase
from tests.fixtures.autopilot_fixtures import FakeClock


@pytest.fixture(scope='module')
def app():
    """
    A fixture that creates a new Flask application instance for a test module.
    Tables are created once per module; each test isolates itself through db_session.
    """
    os.environ['FLASK_ENV'] = 'testing'

    app = create_app(config_name='testing', test_config={
        'SERVER_NAME': 'localhost.localdomain'
    })

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='module')
def client(app):
    """Test client for the Flask application."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """
    A clean database session for each test function.

    All changes are rolled back at the end of the test. On SQLite commit is
    replaced by flush so repository commits stay inside the test transaction.
    """
    with app.app_context():
        connection = db.engine.connect()
        transaction = connection.begin()

        from sqlalchemy.orm import scoped_session, sessionmaker
        session = scoped_session(sessionmaker(bind=connection))

        old_session = db.session

        if 'sqlite' in str(db.engine.url):
            def fake_commit():
                """Replace commit with flush to keep changes in transaction"""
                try:
                    session.flush()
                except Exception:
                    session.rollback()
                    raise

            session.commit = fake_commit
            nested = None
        else:
            nested = connection.begin_nested()

        db.session = session
        _reset_services(app)

        try:
            yield session
        finally:
            try:
                session.rollback()
                session.close()
            except Exception:
                pass

            if nested is not None and nested.is_active:
                nested.rollback()
            if transaction.is_active:
                transaction.rollback()
            connection.close()

            db.session = old_session
            session.remove()
            _reset_services(app)


def _reset_services(app):
    """Drop cached service instances so the next get() binds to the current session."""
    for name in app.services.list_services():
        app.services.reset_service(name)
    app.services.clear_scope('default')


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def insight_repository(db_session):
    return TimingInsightRepository(session=db_session)


@pytest.fixture
def schedule_repository(db_session):
    return CampaignScheduleRepository(session=db_session)


@pytest.fixture
def execution_repository(db_session):
    return CampaignExecutionRepository(session=db_session)


@pytest.fixture
def pattern_repository(db_session):
    return CampaignPatternRepository(session=db_session)


@pytest.fixture
def replay_repository(db_session):
    return ReplayExecutionRepository(session=db_session)


@pytest.fixture
def memory_repository(db_session):
    return MemoryRepository(session=db_session)


@pytest.fixture
def knowledge_base(insight_repository, memory_repository, clock):
    return TimingKnowledgeBase(
        insight_repository=insight_repository,
        memory_repository=memory_repository,
        clock=clock
    )


@pytest.fixture
def schedule_generator(knowledge_base, memory_repository, clock):
    return ScheduleGenerator(
        knowledge_base=knowledge_base,
        memory_repository=memory_repository,
        clock=clock
    )


@pytest.fixture
def step_executor():
    return SimulatedStepExecutor(seed=7)


@pytest.fixture
def coordinator(schedule_repository, execution_repository, step_executor, schedule_generator,
                knowledge_base, memory_repository, clock):
    return CampaignExecutionCoordinator(
        schedule_repository=schedule_repository,
        execution_repository=execution_repository,
        step_executor=step_executor,
        schedule_generator=schedule_generator,
        knowledge_base=knowledge_base,
        memory_repository=memory_repository,
        max_concurrent_campaigns=2,
        clock=clock
    )


@pytest.fixture
def replay_engine_factory(pattern_repository, replay_repository, coordinator, schedule_generator,
                          knowledge_base, memory_repository, clock):
    """Build a replay engine with real collaborators; keyword arguments override them."""
    def factory(config=None, **overrides):
        components = {
            'pattern_repository': pattern_repository,
            'replay_repository': replay_repository,
            'plan_generator': PatternPlanGenerator(),
            'coordinator': coordinator,
            'schedule_generator': schedule_generator,
            'knowledge_base': knowledge_base,
            'content_generator': SimulatedContentGenerator(seed=3),
            'brand_analyzer': SimulatedBrandAnalyzer(seed=3),
            'memory_repository': memory_repository,
            'config': config or ReplayConfig(test_mode=True),
            'seed': 11,
            'clock': clock,
        }
        components.update(overrides)
        return PatternReplayEngine(**components)
    return factory
