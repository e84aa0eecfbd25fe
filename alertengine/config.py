"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from apscheduler.triggers.cron import CronTrigger

MARKET_TIMEZONE = "Asia/Kolkata"

# Environment variables that override the market window
MARKET_ENV_OVERRIDES = {
    "MARKET_START_HOUR": "start_hour",
    "MARKET_START_MINUTE": "start_minute",
    "MARKET_END_HOUR": "end_hour",
    "MARKET_END_MINUTE": "end_minute",
}


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/alertengine.db"


@dataclass
class MarketConfig:
    """Trading window, in market local time."""

    timezone: str = MARKET_TIMEZONE
    start_hour: int = 9
    start_minute: int = 15
    end_hour: int = 15
    end_minute: int = 30


@dataclass
class AlertsConfig:
    """Alert evaluation settings."""

    default_cooldown_minutes: int = 60
    max_workers: int = 1
    evaluation_timeout_seconds: float = 30


@dataclass
class IndicatorsConfig:
    """Indicator retention settings."""

    retention_days: int = 365
    cleanup_weekday: int = 4  # Friday


@dataclass
class AlertCheckConfig:
    """Alert check schedule configuration."""

    cron: str = "* * * * *"
    market_hours_only: bool = True
    price_only: bool = False


@dataclass
class IndicatorCalculationConfig:
    """Indicator calculation schedule configuration."""

    # APScheduler numbers weekdays from Monday, so use names
    cron: str = "0 16 * * mon-fri"


@dataclass
class ScheduleConfig:
    """Schedule configuration."""

    alert_check: AlertCheckConfig = field(default_factory=AlertCheckConfig)
    indicator_calculation: IndicatorCalculationConfig = field(
        default_factory=IndicatorCalculationConfig
    )


@dataclass
class DataSourceConfig:
    """Data source configuration."""

    provider: str = "yahoo_finance"
    history_days: int = 400
    symbol_suffix: str = ".NS"


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"
    max_retries: int = 3
    retry_delay_seconds: int = 5


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    market: MarketConfig = field(default_factory=MarketConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    indicators: IndicatorsConfig = field(default_factory=IndicatorsConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    data_source: DataSourceConfig = field(default_factory=DataSourceConfig)
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


def _apply_market_env_overrides(market: dict[str, Any]) -> dict[str, Any]:
    """Let MARKET_* environment variables override the YAML window."""
    market = dict(market)
    for env_name, key in MARKET_ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            market[key] = int(raw)
        except ValueError:
            raise ConfigValidationError(f"{env_name} must be an integer, got {raw!r}")
    return market


def _validate_cron(expression: str, name: str) -> None:
    try:
        CronTrigger.from_crontab(expression, timezone=MARKET_TIMEZONE)
    except ValueError as e:
        raise ConfigValidationError(f"Invalid cron for {name}: {expression!r} ({e})")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values."""
    db_path = config.database.path
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    market = config.market
    if market.timezone != MARKET_TIMEZONE:
        raise ConfigValidationError(
            f"Market timezone must be {MARKET_TIMEZONE}, got {market.timezone!r}"
        )
    for name in ("start_hour", "end_hour"):
        if not 0 <= getattr(market, name) <= 23:
            raise ConfigValidationError(f"market.{name} must be between 0 and 23")
    for name in ("start_minute", "end_minute"):
        if not 0 <= getattr(market, name) <= 59:
            raise ConfigValidationError(f"market.{name} must be between 0 and 59")
    if (market.start_hour, market.start_minute) >= (market.end_hour, market.end_minute):
        raise ConfigValidationError("Market start must be before market end")

    if config.alerts.default_cooldown_minutes < 0:
        raise ConfigValidationError("alerts.default_cooldown_minutes cannot be negative")
    if config.alerts.max_workers < 1:
        raise ConfigValidationError("alerts.max_workers must be at least 1")
    if config.alerts.evaluation_timeout_seconds < 0:
        raise ConfigValidationError("alerts.evaluation_timeout_seconds cannot be negative")

    if config.indicators.retention_days <= 0:
        raise ConfigValidationError("indicators.retention_days must be positive")
    if not 0 <= config.indicators.cleanup_weekday <= 6:
        raise ConfigValidationError("indicators.cleanup_weekday must be between 0 and 6")

    if config.data_source.history_days <= 0:
        raise ConfigValidationError("data_source.history_days must be positive")

    _validate_cron(config.schedule.alert_check.cron, "schedule.alert_check")
    _validate_cron(
        config.schedule.indicator_calculation.cron,
        "schedule.indicator_calculation",
    )


def build_config(config_dict: dict[str, Any]) -> AppConfig:
    """
    Build and validate an AppConfig from a parsed config mapping.

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    config_dict = _substitute_env_vars(config_dict or {})

    try:
        sched_dict = dict(config_dict.get("schedule") or {})
        schedule = ScheduleConfig(
            alert_check=AlertCheckConfig(**(sched_dict.get("alert_check") or {})),
            indicator_calculation=IndicatorCalculationConfig(
                **(sched_dict.get("indicator_calculation") or {})
            ),
        )
        market = _apply_market_env_overrides(config_dict.get("market") or {})

        config = AppConfig(
            database=DatabaseConfig(**(config_dict.get("database") or {})),
            market=MarketConfig(**market),
            alerts=AlertsConfig(**(config_dict.get("alerts") or {})),
            indicators=IndicatorsConfig(**(config_dict.get("indicators") or {})),
            schedule=schedule,
            data_source=DataSourceConfig(**(config_dict.get("data_source") or {})),
            advanced=AdvancedConfig(**(config_dict.get("advanced") or {})),
        )
    except TypeError as e:
        raise ConfigValidationError(f"Unknown configuration key: {e}")

    _validate_config(config)
    return config


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

    return build_config(raw_config)
