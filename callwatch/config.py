"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/callwatch.db"


@dataclass
class PriceSourceConfig:
    """Price source configuration."""

    provider: str = "yahoo_finance"
    cache_ttl_seconds: float = 300.0
    max_concurrency: int = 5
    lookback_days: int = 7


@dataclass
class UsageConfig:
    """Price check quota configuration."""

    daily_limit: int = 100


@dataclass
class BatchConfig:
    """Batch run configuration."""

    lock_timeout_seconds: float = 600.0
    max_persist_retries: int = 1
    close_on_resolution: bool = True


@dataclass
class TelegramConfig:
    """Telegram broadcast settings."""

    bot_token: str = ""
    parse_mode: str = "Markdown"
    sender_name: str = ""
    recipients: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"
    max_retries: int = 3
    retry_delay_seconds: float = 1.0


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    price_source: PriceSourceConfig = field(default_factory=PriceSourceConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path")
    if not db_path:
        raise ConfigValidationError("Database path is required")

    path = Path(db_path)
    parent = path.parent
    if parent.exists() and not os.access(parent, os.W_OK):
        raise ConfigValidationError(f"Database path not writable: {parent}")

    price_source = config_dict.get("price_source") or {}
    if price_source.get("provider", "yahoo_finance") != "yahoo_finance":
        raise ConfigValidationError(
            f"Unsupported price provider: {price_source.get('provider')}"
        )
    if int(price_source.get("max_concurrency", 5)) < 1:
        raise ConfigValidationError("price_source.max_concurrency must be at least 1")
    if float(price_source.get("cache_ttl_seconds", 0)) < 0:
        raise ConfigValidationError("price_source.cache_ttl_seconds cannot be negative")

    usage = config_dict.get("usage") or {}
    if int(usage.get("daily_limit", 0)) < 0:
        raise ConfigValidationError("usage.daily_limit cannot be negative")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    _validate_config(config_dict)

    try:
        return AppConfig(
            database=DatabaseConfig(**(config_dict.get("database") or {})),
            price_source=PriceSourceConfig(**(config_dict.get("price_source") or {})),
            usage=UsageConfig(**(config_dict.get("usage") or {})),
            batch=BatchConfig(**(config_dict.get("batch") or {})),
            telegram=TelegramConfig(**(config_dict.get("telegram") or {})),
            advanced=AdvancedConfig(**(config_dict.get("advanced") or {})),
        )
    except TypeError as e:
        raise ConfigValidationError(f"Unknown configuration key: {e}") from e
