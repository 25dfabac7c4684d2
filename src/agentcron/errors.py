"""Error taxonomy for the job store and scheduler.

Execution failures are not exceptions: the agent backend reports them as
an ``Outcome`` with ``JobStatus.FAILURE`` so a tick never aborts.
"""


class AgentCronError(Exception):
    """Base class for agentcron errors."""


class InvalidScheduleError(AgentCronError, ValueError):
    """A schedule cannot be evaluated (bad cron, bad interval, bad timezone)."""


class DuplicateIdError(AgentCronError):
    """A job with the same id already exists in the store."""

    def __init__(self, job_id: str):
        super().__init__(f"Job already exists: {job_id}")
        self.job_id = job_id


class NotFoundError(AgentCronError, KeyError):
    """No job with the requested id exists in the store."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return str(self.args[0])
