"""Configuration module."""

from agentcron.config.loader import get_default_config, load_config
from agentcron.config.models import (
    AgentCronConfig,
    ConfigError,
    LoggingConfig,
    SchedulerConfig,
)
from agentcron.config.paths import (
    get_agentcron_home,
    get_config_path,
    get_logs_path,
    get_store_path,
)

__all__ = [
    "AgentCronConfig",
    "ConfigError",
    "LoggingConfig",
    "SchedulerConfig",
    "get_agentcron_home",
    "get_config_path",
    "get_default_config",
    "get_logs_path",
    "get_store_path",
    "load_config",
]
