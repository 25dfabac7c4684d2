"""agentcron - scheduled jobs that drive an agent's autonomous actions."""

__version__ = "0.1.0"
