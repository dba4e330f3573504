"""
Tests for configuration loading, overrides and validation.
"""

import pytest
from omegaconf.errors import ConfigKeyError

from premier_squares_backend.configuration import (
    ConfigurationError,
    contest_rules,
    cors_origins,
    load_settings,
    make_runtime_config,
    validate_config,
)
from premier_squares_backend.main import build_flood_guard, build_rate_limiters


@pytest.fixture(autouse=True)
def clear_cors_env(monkeypatch):
    monkeypatch.delenv("CORS_ALLOWED_ORIGINS", raising=False)


class TestRuntimeConfig:
    def test_defaults(self):
        config = make_runtime_config()
        rules = contest_rules(config)
        assert rules.max_cost_per_square == 10000
        assert rules.required_roster_size == 100
        assert rules.max_name_length == 100
        assert config.rate_limits.start_contest.limit == 5
        assert config.rate_limits.start_contest.window_seconds == 3600
        assert config.security.max_request_bytes == 1048576
        assert config.rate_limits.ddos.limit == 30
        assert config.rate_limits.ddos.window_seconds == 60
        assert config.rate_limits.ddos.block_seconds == 3600

    def test_test_environment_from_env(self):
        config = make_runtime_config()
        assert config.app.environment == "test"
        assert config.rate_limits.enabled is False

    def test_overrides(self):
        config = make_runtime_config({"contest_rules": {"max_cost_per_square": 1000}})
        assert contest_rules(config).max_cost_per_square == 1000

    def test_environment_variable(self, monkeypatch):
        monkeypatch.setenv("SQUARES_MAX_COST_PER_SQUARE", "500")
        assert contest_rules(make_runtime_config()).max_cost_per_square == 500

    def test_unknown_override_is_rejected(self):
        with pytest.raises(ConfigKeyError):
            make_runtime_config({"contest_rules": {"no_such_rule": 1}})


class TestCorsOrigins:
    def test_environment_defaults(self):
        config = make_runtime_config({"app": {"environment": "development"}})
        assert "http://localhost:3000" in cors_origins(config)

    def test_explicit_origins_win(self):
        config = make_runtime_config({"cors": {"allowed_origins": "https://a.example, https://b.example"}})
        assert cors_origins(config) == ["https://a.example", "https://b.example"]


class TestValidateConfig:
    def test_default_config_is_valid(self):
        assert validate_config(make_runtime_config()) == []

    def test_production_defaults_are_valid(self):
        assert validate_config(make_runtime_config({"app": {"environment": "production"}})) == []

    def test_production_rejects_insecure_origins(self):
        config = make_runtime_config(
            {"app": {"environment": "production"}, "cors": {"allowed_origins": "http://localhost:3000"}}
        )
        errors = validate_config(config)
        assert "Non-HTTPS origins not allowed in production: http://localhost:3000" in errors
        assert "Localhost origins not allowed in production: http://localhost:3000" in errors

    def test_unknown_environment(self):
        errors = validate_config(make_runtime_config({"app": {"environment": "staging"}}))
        assert errors == ["app.environment must be one of development, production, test (got 'staging')"]

    def test_non_positive_values(self):
        config = make_runtime_config(
            {
                "rate_limits": {"set_winner": {"limit": 0}},
                "contest_rules": {"required_roster_size": 0},
                "security": {"max_request_bytes": 0},
            }
        )
        assert validate_config(config) == [
            "rate_limits.set_winner.limit must be a positive number",
            "contest_rules.required_roster_size must be a positive number",
            "security.max_request_bytes must be greater than 0",
        ]

    def test_load_settings_fails_fast(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings({"store": {"timeout_seconds": 0}})
        assert exc_info.value.errors == ["store.timeout_seconds must be a positive number"]

    def test_block_duration_must_be_positive(self):
        errors = validate_config(make_runtime_config({"rate_limits": {"ddos": {"block_seconds": 0}}}))
        assert errors == ["rate_limits.ddos.block_seconds must be a positive number"]


class TestRateLimitWiring:
    def test_flood_guard_uses_ddos_limits(self):
        config = make_runtime_config({"rate_limits": {"enabled": True}})
        limiters = build_rate_limiters(config)
        guard = build_flood_guard(config, limiters)

        assert guard.limiter is limiters["ddos"]
        assert guard.limiter.limit == 30
        assert guard.limiter.window_seconds == 60
        assert guard.block_seconds == 3600

    def test_disabled_rate_limits(self):
        config = make_runtime_config({"rate_limits": {"enabled": False}})
        limiters = build_rate_limiters(config)
        assert limiters == {}
        assert build_flood_guard(config, limiters) is None
