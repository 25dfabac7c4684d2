"""Scheduling subsystem: recurring and one-shot agent jobs.

Public API:
- SchedulerEngine: Tick loop that fires due jobs and applies lifecycle policy
- JsonFileStore: JSON file persistence for the job store
- next_fire_after: Pure next-fire computation for a schedule
- add_job / remove_job / update_job / get_job: Store mutations

Types:
- EverySchedule, CronSchedule, AtSchedule, UnknownSchedule
- AgentTurnPayload, UnknownPayload
- Job, JobState, JobStatus, Store, Outcome
"""

from agentcron.scheduling.engine import JobPhase, SchedulerEngine, compute_next_run
from agentcron.scheduling.schedule import (
    describe_schedule,
    next_fire_after,
    validate_schedule,
)
from agentcron.scheduling.store import (
    JsonFileStore,
    StorePersistence,
    add_job,
    get_job,
    remove_job,
    update_job,
)
from agentcron.scheduling.types import (
    AgentTurnPayload,
    AtSchedule,
    CronSchedule,
    DeliverySink,
    EverySchedule,
    Executor,
    Job,
    JobState,
    JobStatus,
    Outcome,
    Payload,
    Schedule,
    Store,
    UnknownPayload,
    UnknownSchedule,
)

__all__ = [
    "AgentTurnPayload",
    "AtSchedule",
    "CronSchedule",
    "DeliverySink",
    "EverySchedule",
    "Executor",
    "Job",
    "JobPhase",
    "JobState",
    "JobStatus",
    "JsonFileStore",
    "Outcome",
    "Payload",
    "Schedule",
    "SchedulerEngine",
    "Store",
    "StorePersistence",
    "UnknownPayload",
    "UnknownSchedule",
    "add_job",
    "compute_next_run",
    "describe_schedule",
    "get_job",
    "next_fire_after",
    "remove_job",
    "update_job",
    "validate_schedule",
]
