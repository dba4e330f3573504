from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .models import ContestRules

# Load environment variables from .env file
load_dotenv()

CONFIG_PATH = Path(__file__).resolve().parent / "config/config.yaml"

ENVIRONMENTS = ("development", "production", "test")

RATE_LIMIT_NAMES = ("ddos", "general", "create_contest", "update_contest", "start_contest", "set_winner")


class ConfigurationError(ValueError):
    def __init__(self, errors: List[str]) -> None:
        self.errors = errors
        super().__init__("Configuration validation failed:\n" + "\n".join(errors))


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve)  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the effective configuration.

    Environment variables are resolved against the packaged defaults first,
    then ``overrides`` (a nested dict mirroring config.yaml) are merged on top.
    Unknown keys in ``overrides`` are rejected.
    """
    base = OmegaConf.create(get_default_config_container(resolve=True))
    OmegaConf.set_struct(base, True)

    merged = DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides or {})))
    return merged


def contest_rules(config: DictConfig) -> ContestRules:
    return ContestRules(**OmegaConf.to_container(config.contest_rules, resolve=True))  # type: ignore[arg-type]


def cors_origins(config: DictConfig) -> List[str]:
    """Explicit comma-separated origins win over the per-environment defaults."""
    raw = config.cors.allowed_origins
    if raw:
        return [origin.strip() for origin in str(raw).split(",") if origin.strip()]
    defaults = OmegaConf.to_container(config.cors.defaults, resolve=True)
    return list(defaults.get(config.app.environment) or [])  # type: ignore[union-attr]


def validate_config(config: DictConfig) -> List[str]:
    """Return every problem found in ``config``; an empty list means valid."""
    errors: List[str] = []

    environment = config.app.environment
    if environment not in ENVIRONMENTS:
        errors.append(f"app.environment must be one of {', '.join(ENVIRONMENTS)} (got '{environment}')")

    if environment == "production":
        origins = cors_origins(config)
        if not origins:
            errors.append("CORS_ALLOWED_ORIGINS must be provided in production")
        non_https = [origin for origin in origins if not origin.startswith("https://")]
        if non_https:
            errors.append(f"Non-HTTPS origins not allowed in production: {', '.join(non_https)}")
        local = [origin for origin in origins if "localhost" in origin or "127.0.0.1" in origin]
        if local:
            errors.append(f"Localhost origins not allowed in production: {', '.join(local)}")

    for name in RATE_LIMIT_NAMES:
        section = config.rate_limits[name]
        if section.limit <= 0:
            errors.append(f"rate_limits.{name}.limit must be a positive number")
        if section.window_seconds <= 0:
            errors.append(f"rate_limits.{name}.window_seconds must be a positive number")
    if config.rate_limits.ddos.block_seconds <= 0:
        errors.append("rate_limits.ddos.block_seconds must be a positive number")

    for key, value in config.contest_rules.items():
        if value <= 0:
            errors.append(f"contest_rules.{key} must be a positive number")

    if config.security.max_request_bytes <= 0:
        errors.append("security.max_request_bytes must be greater than 0")

    if config.store.timeout_seconds <= 0:
        errors.append("store.timeout_seconds must be a positive number")

    return errors


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """Build the runtime configuration and fail fast when it is invalid."""
    config = make_runtime_config(overrides)
    errors = validate_config(config)
    if errors:
        raise ConfigurationError(errors)
    return config
