"""CLI command modules."""

from agentcron.cli.commands import config, jobs

__all__ = ["config", "jobs"]
