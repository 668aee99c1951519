"""
Tests for configuration selection and tunable validation
"""

import pytest

from config import (
    Config, ConfigurationError, DevelopmentConfig, TestingConfig, ProductionConfig, get_config,
    _env_int, _env_bool
)


class TestGetConfig:

    def test_named_configs(self):
        assert get_config('testing') is TestingConfig
        assert get_config('production') is ProductionConfig
        assert get_config('unknown') is DevelopmentConfig

    def test_defaults_to_flask_env(self, monkeypatch):
        monkeypatch.setenv('FLASK_ENV', 'testing')

        assert get_config() is TestingConfig

    def test_testing_uses_simulation(self):
        assert TestingConfig.SQLALCHEMY_DATABASE_URI == 'sqlite:///:memory:'
        assert TestingConfig.REPLAY_TEST_MODE is True
        assert TestingConfig.SIMULATION_SEED == 1234


class TestEnvHelpers:

    def test_env_int(self, monkeypatch):
        monkeypatch.setenv('MAX_CONCURRENT_CAMPAIGNS', '7')
        assert _env_int('MAX_CONCURRENT_CAMPAIGNS', 5) == 7

        monkeypatch.setenv('MAX_CONCURRENT_CAMPAIGNS', 'seven')
        with pytest.raises(ConfigurationError, match='must be an integer'):
            _env_int('MAX_CONCURRENT_CAMPAIGNS', 5)

    def test_env_bool(self, monkeypatch):
        monkeypatch.setenv('REPLAY_TEST_MODE', 'yes')
        assert _env_bool('REPLAY_TEST_MODE', False) is True

        monkeypatch.delenv('REPLAY_TEST_MODE')
        assert _env_bool('REPLAY_TEST_MODE', False) is False


class TestValidation:

    def test_skipped_under_testing(self, monkeypatch):
        monkeypatch.setenv('FLASK_ENV', 'testing')
        monkeypatch.setattr(Config, 'DECAY_FACTOR', 5.0)

        Config.validate_required_config()

    def test_invalid_tunables_are_reported_together(self, monkeypatch):
        monkeypatch.setenv('FLASK_ENV', 'production')
        monkeypatch.delenv('SKIP_ENV_VALIDATION', raising=False)
        monkeypatch.setattr(Config, 'DECAY_FACTOR', 1.5)
        monkeypatch.setattr(Config, 'FAILURE_POLICY', 'retry_forever')

        with pytest.raises(ConfigurationError) as exc_info:
            Config.validate_required_config()

        message = str(exc_info.value)
        assert 'DECAY_FACTOR must be in (0, 1]' in message
        assert 'FAILURE_POLICY must be best_effort or abort_on_critical' in message
