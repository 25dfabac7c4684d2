"""Configuration models using Pydantic."""

from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from agentcron.config.paths import get_store_path


class ConfigError(Exception):
    """Configuration error."""

    pass


class SchedulerConfig(BaseModel):
    """Configuration for the scheduler engine."""

    # Seconds between ticks
    poll_interval: float = Field(default=5.0, gt=0)
    # Seconds before an execution counts as failed; None waits forever
    execution_timeout: float | None = Field(default=300.0, gt=0)


class LoggingConfig(BaseModel):
    """Configuration for log output."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    use_rich: bool = False
    log_to_file: bool = False
    retention_days: int = Field(default=7, ge=1)


class AgentCronConfig(BaseModel):
    """Root configuration model."""

    store_path: Path = Field(default_factory=get_store_path)
    # Zone for cron schedules that do not name their own
    timezone: str = "UTC"
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("store_path")
    @classmethod
    def _expand_store_path(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (KeyError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value
