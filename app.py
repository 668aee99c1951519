# app.py

from flask import Flask, g, request, jsonify
from config import get_config
from extensions import db
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="campaign-autopilot", log_level="INFO")
logger = get_logger(__name__)


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize app with config
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)

    # Import models so create_all sees every table
    import autopilot_database  # noqa: F401

    registry = _build_registry(app.config)

    # Validate all dependencies are registered
    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        raise RuntimeError(f"Service dependency errors: {errors}")

    if app.debug:
        logger.debug(f"Service initialization order: {registry.get_initialization_order()}")

    app.services = registry

    # Add request tracking middleware
    @app.before_request
    def before_request():
        g.request_id = str(uuid.uuid4())
        logger.info("Request started",
                    request_id=g.request_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    # Global error handlers
    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Page not found",
                       request_id=getattr(g, 'request_id', None),
                       path=request.path)
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': 'campaign-autopilot'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    # Register blueprints for routes
    from routes.autopilot_routes import autopilot_bp
    app.register_blueprint(autopilot_bp)

    return app


def _build_registry(config):
    """Register repositories, collaborators and the four autopilot services."""
    from services.registry import ServiceRegistry, ServiceLifecycle
    registry = ServiceRegistry()

    # Use a factory for db_session to ensure fresh sessions in tests
    registry.register_factory(
        'db_session',
        lambda: _get_current_db_session(),
        lifecycle=ServiceLifecycle.SCOPED
    )

    # Repositories
    for name, factory in (
        ('timing_insight_repository', _create_timing_insight_repository),
        ('campaign_schedule_repository', _create_campaign_schedule_repository),
        ('campaign_execution_repository', _create_campaign_execution_repository),
        ('campaign_pattern_repository', _create_campaign_pattern_repository),
        ('replay_execution_repository', _create_replay_execution_repository),
        ('memory_repository', _create_memory_repository),
    ):
        registry.register_factory(name, factory, dependencies=['db_session'])

    # Collaborators
    seed = config.get('SIMULATION_SEED')
    registry.register_singleton('step_executor', lambda: _create_step_executor(seed))
    registry.register_singleton('content_generator', lambda: _create_content_generator(config))
    registry.register_singleton('brand_analyzer', lambda: _create_brand_analyzer(config))
    registry.register_singleton('plan_generator', lambda: _create_plan_generator())

    # Autopilot services
    registry.register_factory(
        'timing_knowledge_base',
        lambda timing_insight_repository, memory_repository: _create_timing_knowledge_base(
            config, timing_insight_repository, memory_repository),
        dependencies=['timing_insight_repository', 'memory_repository']
    )

    registry.register_factory(
        'schedule_generator',
        lambda timing_knowledge_base, memory_repository: _create_schedule_generator(
            config, timing_knowledge_base, memory_repository),
        dependencies=['timing_knowledge_base', 'memory_repository']
    )

    registry.register_factory(
        'campaign_coordinator',
        lambda campaign_schedule_repository, campaign_execution_repository, step_executor,
        schedule_generator, timing_knowledge_base, memory_repository: _create_campaign_coordinator(
            config, campaign_schedule_repository, campaign_execution_repository, step_executor,
            schedule_generator, timing_knowledge_base, memory_repository),
        dependencies=['campaign_schedule_repository', 'campaign_execution_repository', 'step_executor',
                      'schedule_generator', 'timing_knowledge_base', 'memory_repository']
    )

    registry.register_factory(
        'pattern_replay_engine',
        lambda campaign_pattern_repository, replay_execution_repository, plan_generator,
        campaign_coordinator, schedule_generator, timing_knowledge_base, content_generator,
        brand_analyzer, memory_repository: _create_pattern_replay_engine(
            config, campaign_pattern_repository, replay_execution_repository, plan_generator,
            campaign_coordinator, schedule_generator, timing_knowledge_base, content_generator,
            brand_analyzer, memory_repository),
        dependencies=['campaign_pattern_repository', 'replay_execution_repository', 'plan_generator',
                      'campaign_coordinator', 'schedule_generator', 'timing_knowledge_base',
                      'content_generator', 'brand_analyzer', 'memory_repository']
    )

    return registry


# Service Factory Functions
# These are only called when the service is first requested

def _get_current_db_session():
    """Get the current database session"""
    return db.session


def _create_timing_insight_repository(db_session):
    from repositories.timing_insight_repository import TimingInsightRepository
    return TimingInsightRepository(session=db_session)


def _create_campaign_schedule_repository(db_session):
    from repositories.campaign_schedule_repository import CampaignScheduleRepository
    return CampaignScheduleRepository(session=db_session)


def _create_campaign_execution_repository(db_session):
    from repositories.campaign_execution_repository import CampaignExecutionRepository
    return CampaignExecutionRepository(session=db_session)


def _create_campaign_pattern_repository(db_session):
    from repositories.campaign_pattern_repository import CampaignPatternRepository
    return CampaignPatternRepository(session=db_session)


def _create_replay_execution_repository(db_session):
    from repositories.replay_execution_repository import ReplayExecutionRepository
    return ReplayExecutionRepository(session=db_session)


def _create_memory_repository(db_session):
    from repositories.memory_repository import MemoryRepository
    return MemoryRepository(session=db_session)


def _create_step_executor(seed):
    from services.step_executor import SimulatedStepExecutor
    return SimulatedStepExecutor(seed=seed)


def _create_content_generator(config):
    """HTTP client when CONTENT_SERVICE_URL is configured, simulated otherwise"""
    if config.get('CONTENT_SERVICE_URL'):
        from services.collaborators import HttpContentGenerator
        return HttpContentGenerator(config['CONTENT_SERVICE_URL'],
                                    api_key=config.get('COLLABORATOR_API_KEY'),
                                    timeout=config['COLLABORATOR_TIMEOUT_SECONDS'])
    from services.collaborators import SimulatedContentGenerator
    logger.info("Content service URL not configured, using simulated content generator")
    return SimulatedContentGenerator(seed=config.get('SIMULATION_SEED'))


def _create_brand_analyzer(config):
    if config.get('BRAND_SERVICE_URL'):
        from services.collaborators import HttpBrandAnalyzer
        return HttpBrandAnalyzer(config['BRAND_SERVICE_URL'],
                                 api_key=config.get('COLLABORATOR_API_KEY'),
                                 timeout=config['COLLABORATOR_TIMEOUT_SECONDS'])
    from services.collaborators import SimulatedBrandAnalyzer
    logger.info("Brand service URL not configured, using simulated brand analyzer")
    return SimulatedBrandAnalyzer(seed=config.get('SIMULATION_SEED'))


def _create_plan_generator():
    from services.collaborators import PatternPlanGenerator
    return PatternPlanGenerator()


def _create_timing_knowledge_base(config, timing_insight_repository, memory_repository):
    from services.timing_knowledge_service import TimingKnowledgeBase
    return TimingKnowledgeBase(
        insight_repository=timing_insight_repository,
        memory_repository=memory_repository,
        decay_factor=config['DECAY_FACTOR'],
        confidence_floor=config['CONFIDENCE_FLOOR'],
        learning_cycle_minutes=config['LEARNING_CYCLE_MINUTES'],
        default_timezone=config['DEFAULT_TIMEZONE']
    )


def _create_schedule_generator(config, timing_knowledge_base, memory_repository):
    from services.schedule_generator_service import ScheduleGenerator
    return ScheduleGenerator(
        knowledge_base=timing_knowledge_base,
        memory_repository=memory_repository,
        min_insight_confidence=config['MIN_INSIGHT_CONFIDENCE'],
        conservative_min_sample_size=config['CONSERVATIVE_MIN_SAMPLE_SIZE'],
        immediate_lead_minutes=config['IMMEDIATE_LEAD_MINUTES']
    )


def _create_campaign_coordinator(config, campaign_schedule_repository, campaign_execution_repository,
                                 step_executor, schedule_generator, timing_knowledge_base, memory_repository):
    from services.campaign_execution_service import CampaignExecutionCoordinator
    return CampaignExecutionCoordinator(
        schedule_repository=campaign_schedule_repository,
        execution_repository=campaign_execution_repository,
        step_executor=step_executor,
        schedule_generator=schedule_generator,
        knowledge_base=timing_knowledge_base,
        memory_repository=memory_repository,
        max_concurrent_campaigns=config['MAX_CONCURRENT_CAMPAIGNS'],
        stuck_threshold_minutes=config['STUCK_THRESHOLD_MINUTES'],
        execution_timeout_hours=config['EXECUTION_TIMEOUT_HOURS'],
        failure_policy=config['FAILURE_POLICY']
    )


def _create_pattern_replay_engine(config, campaign_pattern_repository, replay_execution_repository,
                                  plan_generator, campaign_coordinator, schedule_generator,
                                  timing_knowledge_base, content_generator, brand_analyzer, memory_repository):
    from services.pattern_replay_service import PatternReplayEngine, ReplayConfig
    replay_config = ReplayConfig(
        confidence_threshold=config['REPLAY_CONFIDENCE_THRESHOLD'],
        max_concurrent_replays=config['MAX_CONCURRENT_REPLAYS'],
        minimum_time_between_replays_hours=config['REPLAY_MIN_HOURS_BETWEEN'],
        budget_allocation=config['REPLAY_BUDGET'],
        test_mode=config['REPLAY_TEST_MODE'],
        pattern_max_age_days=config['PATTERN_MAX_AGE_DAYS'],
        replay_timeout_hours=config['REPLAY_TIMEOUT_HOURS'],
        variance_bound=config['REPLAY_VARIANCE_BOUND'],
        collaborator_timeout_seconds=config['COLLABORATOR_TIMEOUT_SECONDS']
    )
    return PatternReplayEngine(
        pattern_repository=campaign_pattern_repository,
        replay_repository=replay_execution_repository,
        plan_generator=plan_generator,
        coordinator=campaign_coordinator,
        schedule_generator=schedule_generator,
        knowledge_base=timing_knowledge_base,
        content_generator=content_generator,
        brand_analyzer=brand_analyzer,
        memory_repository=memory_repository,
        config=replay_config,
        seed=config.get('SIMULATION_SEED')
    )
