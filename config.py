import os
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


def _env_int(key: str, default: int) -> int:
    value = os.environ.get(key)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be an integer, got {value!r}")


def _env_float(key: str, default: float) -> float:
    value = os.environ.get(key)
    if value is None or value == '':
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a number, got {value!r}")


def _env_bool(key: str, default: bool) -> bool:
    value = os.environ.get(key)
    if value is None or value == '':
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-only-secret'
    FLASK_ENV = os.environ.get('FLASK_ENV')

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('POSTGRES_URI') or \
        'sqlite:///' + os.path.join(basedir, 'autopilot.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Celery Configuration (uppercase prefixes, mapped by Celery to its lowercase settings)
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    # Timing knowledge base
    DECAY_FACTOR = _env_float('DECAY_FACTOR', 0.95)
    CONFIDENCE_FLOOR = _env_float('CONFIDENCE_FLOOR', 0.1)
    LEARNING_CYCLE_MINUTES = _env_int('LEARNING_CYCLE_MINUTES', 30)
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'UTC')

    # Schedule generator
    MIN_INSIGHT_CONFIDENCE = _env_float('MIN_INSIGHT_CONFIDENCE', 0.2)
    CONSERVATIVE_MIN_SAMPLE_SIZE = _env_int('CONSERVATIVE_MIN_SAMPLE_SIZE', 500)
    IMMEDIATE_LEAD_MINUTES = _env_int('IMMEDIATE_LEAD_MINUTES', 60)

    # Execution coordinator
    MAX_CONCURRENT_CAMPAIGNS = _env_int('MAX_CONCURRENT_CAMPAIGNS', 5)
    STUCK_THRESHOLD_MINUTES = _env_int('STUCK_THRESHOLD_MINUTES', 10)
    EXECUTION_TIMEOUT_HOURS = _env_int('EXECUTION_TIMEOUT_HOURS', 24)
    FAILURE_POLICY = os.environ.get('FAILURE_POLICY', 'best_effort')

    # Pattern replay engine
    MAX_CONCURRENT_REPLAYS = _env_int('MAX_CONCURRENT_REPLAYS', 3)
    REPLAY_CONFIDENCE_THRESHOLD = _env_float('REPLAY_CONFIDENCE_THRESHOLD', 85.0)
    REPLAY_MIN_HOURS_BETWEEN = _env_int('REPLAY_MIN_HOURS_BETWEEN', 24)
    REPLAY_TIMEOUT_HOURS = _env_int('REPLAY_TIMEOUT_HOURS', 48)
    REPLAY_VARIANCE_BOUND = _env_float('REPLAY_VARIANCE_BOUND', 0.2)
    REPLAY_BUDGET = _env_float('REPLAY_BUDGET', 10000.0)
    REPLAY_TEST_MODE = _env_bool('REPLAY_TEST_MODE', False)
    PATTERN_MAX_AGE_DAYS = _env_int('PATTERN_MAX_AGE_DAYS', 90)

    # Collaborators
    COLLABORATOR_TIMEOUT_SECONDS = _env_float('COLLABORATOR_TIMEOUT_SECONDS', 10.0)
    CONTENT_SERVICE_URL = os.environ.get('CONTENT_SERVICE_URL')
    BRAND_SERVICE_URL = os.environ.get('BRAND_SERVICE_URL')
    COLLABORATOR_API_KEY = os.environ.get('COLLABORATOR_API_KEY')
    SIMULATION_SEED = _env_int('SIMULATION_SEED', 0) if os.environ.get('SIMULATION_SEED') else None

    JSON_SORT_KEYS = False

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that tunables hold sensible values"""
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        errors = []
        if not 0 < cls.DECAY_FACTOR <= 1:
            errors.append(f"DECAY_FACTOR must be in (0, 1], got {cls.DECAY_FACTOR}")
        if not 0 <= cls.CONFIDENCE_FLOOR < 1:
            errors.append(f"CONFIDENCE_FLOOR must be in [0, 1), got {cls.CONFIDENCE_FLOOR}")
        if cls.MAX_CONCURRENT_CAMPAIGNS < 1:
            errors.append("MAX_CONCURRENT_CAMPAIGNS must be at least 1")
        if cls.MAX_CONCURRENT_REPLAYS < 1:
            errors.append("MAX_CONCURRENT_REPLAYS must be at least 1")
        if cls.FAILURE_POLICY not in ('best_effort', 'abort_on_critical'):
            errors.append(f"FAILURE_POLICY must be best_effort or abort_on_critical, got {cls.FAILURE_POLICY}")

        if errors:
            raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}")

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        cls.validate_required_config()


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    # Develop against simulated collaborators with reproducible outcomes
    SIMULATION_SEED = Config.SIMULATION_SEED if Config.SIMULATION_SEED is not None else 42


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Use test Redis database
    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'

    SIMULATION_SEED = 1234
    REPLAY_TEST_MODE = True
    CONTENT_SERVICE_URL = None
    BRAND_SERVICE_URL = None

    @classmethod
    def init_app(cls, app):
        """Testing-specific initialization"""
        # Disable foreign keys for SQLite in tests to allow flexible test data setup
        from sqlalchemy import event
        from sqlalchemy.engine import Engine

        @event.listens_for(Engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            if 'sqlite' in str(dbapi_connection):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=OFF")
                cursor.close()


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    # If using rediss:// (SSL), append required parameters
    if CELERY_BROKER_URL.startswith('rediss://'):
        if 'ssl_cert_reqs' not in CELERY_BROKER_URL:
            separator = '&' if '?' in CELERY_BROKER_URL else '?'
            ssl_params = f"{separator}ssl_cert_reqs=CERT_NONE"
            CELERY_BROKER_URL += ssl_params
            CELERY_RESULT_BACKEND += ssl_params

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        if not cls.SQLALCHEMY_DATABASE_URI:
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.get_required_env('POSTGRES_URI')
        cls.validate_required_config()


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
