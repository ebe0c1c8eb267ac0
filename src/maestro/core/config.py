"""Configuration loading and validation."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("maestro.yaml")


class WatchdogConfig(BaseModel):
    """Stuck-agent and handoff-cycle detection."""
    enabled: bool = True
    activity_timeout_ms: int = Field(default=120_000, gt=0)
    check_interval_ms: int = Field(default=10_000, gt=0)
    max_handoff_cycles: int = Field(default=3, ge=1)
    grace_periods_enabled: bool = True
    llm_request_grace_period_ms: int = Field(default=300_000, gt=0)

    @model_validator(mode="after")
    def warn_on_short_grace_period(self) -> "WatchdogConfig":
        if self.grace_periods_enabled and self.llm_request_grace_period_ms < self.activity_timeout_ms:
            logger.warning(
                f"llm_request_grace_period_ms ({self.llm_request_grace_period_ms}) is shorter than "
                f"activity_timeout_ms ({self.activity_timeout_ms}); long LLM calls get less time than idle agents"
            )
        return self


class RecoveryConfig(BaseModel):
    """Replanning and cascading failure."""
    enabled: bool = True
    max_replan_attempts: int = Field(default=2, ge=0)
    cascade_on_replan_failure: bool = True


class ExecutionConfig(BaseModel):
    """Execution loop settings."""
    max_retries: int = 3
    task_timeout_ms: int = Field(default=300_000, gt=0)
    retry_backoff_ms: int = Field(default=1000, ge=0)
    idle_poll_ms: int = Field(default=100, gt=0)  # Sleep when nothing is ready but work is in flight
    review_required: bool = True
    confidence_threshold: float = 0.6
    parallel_assessment: bool = True
    router_recovery_enabled: bool = True

    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_retries must be >= 1, got {v}")
        return v

    @field_validator("confidence_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence_threshold must be between 0 and 1, got {v}")
        return v


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Optional[Path] = None
    use_json: bool = False
    use_rich: bool = True

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class MaestroConfig(BaseSettings):
    """Main orchestrator configuration."""
    model_config = SettingsConfigDict(
        env_prefix="MAESTRO_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    project_name: str = "maestro"
    working_directory: Path = Field(default=Path("."))
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Resolved path -> (config, mtime it was parsed at)
_config_cache: Dict[str, Tuple[MaestroConfig, float]] = {}

ENV_REFERENCE = re.compile(r"^\$\{([^}]+)\}$")


def _get_cached_or_load(resolved_path: Path, loader: Callable[[Path], MaestroConfig]) -> Optional[MaestroConfig]:
    """Parse the file only when its mtime differs from the cached entry."""
    key = str(resolved_path)
    try:
        mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return None

    entry = _config_cache.get(key)
    if entry is None or entry[1] != mtime:
        entry = (loader(resolved_path), mtime)
        _config_cache[key] = entry
    return entry[0]


def _load_config_from_file(config_path: Path) -> MaestroConfig:
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}", {"path": str(config_path)}) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Config root in {config_path} must be a mapping, got {type(data).__name__}",
            {"path": str(config_path)},
        )

    return MaestroConfig(**_expand_env_vars(data))


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> MaestroConfig:
    """Load orchestrator configuration from a YAML file.

    A missing file yields defaults. Repeated calls return the cached object
    until the file's mtime changes.
    """
    config_path = Path(config_path)
    config = _get_cached_or_load(config_path.resolve(), _load_config_from_file)
    if config is None:
        logger.warning(f"Config file not found: {config_path}. Using default configuration.")
        return MaestroConfig()
    return config


def clear_config_cache() -> None:
    _config_cache.clear()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Replace whole-string ``${VAR}`` values with the environment's value.

    Unset variables are left as the literal reference and logged with the
    dotted config path (e.g. ``execution.max_retries``).
    """
    if isinstance(data, dict):
        return {key: _expand_env_vars(value, f"{_path}.{key}" if _path else str(key)) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{index}]") for index, item in enumerate(data)]
    if not isinstance(data, str):
        return data

    match = ENV_REFERENCE.match(data)
    if match is None:
        return data
    name = match.group(1)
    if name not in os.environ:
        logger.warning(f"Environment variable '{name}' is not set (config path: {_path or 'root'}); keeping '{data}'")
        return data
    return os.environ[name]
