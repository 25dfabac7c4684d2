"""Centralized path management for agentcron.

All state (config, job store, logs) lives under a single base directory,
overridable with the AGENTCRON_HOME environment variable.

Default locations:
- Linux/macOS: ~/.agentcron
- Windows: %USERPROFILE%\\.agentcron
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "AGENTCRON_HOME"


@lru_cache(maxsize=1)
def get_agentcron_home() -> Path:
    """Get the base directory for all agentcron data.

    Resolution order:
    1. AGENTCRON_HOME environment variable (if set)
    2. Platform default (~/.agentcron)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".agentcron"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_agentcron_home() / "config.toml"


def get_store_path() -> Path:
    """Get the default job store path."""
    return get_agentcron_home() / "cron" / "jobs.json"


def get_logs_path() -> Path:
    """Get the default logs directory path."""
    return get_agentcron_home() / "logs"


def get_all_paths() -> dict[str, Path]:
    return {
        "home": get_agentcron_home(),
        "config": get_config_path(),
        "store": get_store_path(),
        "logs": get_logs_path(),
    }
