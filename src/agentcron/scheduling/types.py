"""Scheduling types.

Public types:
- Schedule: EverySchedule | CronSchedule | AtSchedule | UnknownSchedule
- Payload: AgentTurnPayload | UnknownPayload
- JobStatus, JobState, Job, Store: run bookkeeping and the persisted envelope
- Outcome: what the agent backend reports for one execution
- Executor, DeliverySink: async collaborators consumed by the engine

Every type serializes to the persisted JSON layout via ``to_dict()`` and is
rebuilt with ``from_dict()``. Unknown schedule/payload kinds and unknown job
keys are carried verbatim so newer files survive a load/save cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

logger = logging.getLogger(__name__)

STORE_VERSION = 1
DEFAULT_INTERVAL_SECONDS = 60


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Normalise an instant to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_instant(raw: Any) -> datetime | None:
    if not raw:
        return None
    return ensure_utc(datetime.fromisoformat(str(raw)))


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EverySchedule:
    """Fire every ``interval_seconds`` on the grid ``anchor + k * interval``."""

    interval_seconds: int
    anchor: datetime | None = None
    kind: Literal["every"] = field(default="every", init=False)

    def __post_init__(self) -> None:
        if self.anchor is not None:
            object.__setattr__(self, "anchor", ensure_utc(self.anchor))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "intervalSeconds": self.interval_seconds,
        }
        if self.anchor is not None:
            data["anchor"] = self.anchor.isoformat()
        return data


@dataclass(frozen=True)
class CronSchedule:
    """Fire on a 5-field cron expression evaluated in ``timezone``."""

    expression: str
    timezone: str | None = None  # IANA name, None means UTC
    kind: Literal["cron"] = field(default="cron", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "expression": self.expression}
        if self.timezone:
            data["timezone"] = self.timezone
        return data


@dataclass(frozen=True)
class AtSchedule:
    """Fire once at a fixed instant."""

    at: datetime
    kind: Literal["at"] = field(default="at", init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "at", ensure_utc(self.at))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "at": self.at.isoformat()}


@dataclass(frozen=True)
class UnknownSchedule:
    """A schedule kind this version does not understand. Never fires."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data)


Schedule = EverySchedule | CronSchedule | AtSchedule | UnknownSchedule


def schedule_from_dict(data: dict[str, Any]) -> Schedule:
    """Rebuild a schedule from its persisted form.

    Raises:
        ValueError: If a known kind is missing required fields.
    """
    kind = str(data.get("kind") or "every")
    match kind:
        case "every":
            return EverySchedule(
                interval_seconds=int(data["intervalSeconds"]),
                anchor=parse_instant(data.get("anchor")),
            )
        case "cron":
            expression = data.get("expression")
            if not expression:
                raise ValueError("cron schedule requires an expression")
            return CronSchedule(
                expression=str(expression), timezone=data.get("timezone")
            )
        case "at":
            at = parse_instant(data.get("at"))
            if at is None:
                raise ValueError("at schedule requires an instant")
            return AtSchedule(at=at)
        case _:
            return UnknownSchedule(kind=kind, data=dict(data))


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentTurnPayload:
    """Run one agent turn with ``message``.

    ``channel`` and ``to`` are routing hints for the delivery sink and are
    only meaningful when ``deliver`` is set.
    """

    message: str = ""
    deliver: bool = False
    channel: str | None = None
    to: str | None = None
    kind: Literal["agent_turn"] = field(default="agent_turn", init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "deliver": self.deliver,
        }
        if self.channel:
            data["channel"] = self.channel
        if self.to:
            data["to"] = self.to
        return data


@dataclass(frozen=True)
class UnknownPayload:
    """A payload kind this version cannot execute."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data)


Payload = AgentTurnPayload | UnknownPayload


def payload_from_dict(data: dict[str, Any]) -> Payload:
    kind = str(data.get("kind") or "agent_turn")
    match kind:
        case "agent_turn":
            return AgentTurnPayload(
                message=str(data.get("message") or ""),
                deliver=data.get("deliver") is True,
                channel=data.get("channel"),
                to=data.get("to"),
            )
        case _:
            return UnknownPayload(kind=kind, data=dict(data))


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


class JobStatus(StrEnum):
    """Result of the most recent fire."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


# Status names written by older job files
_LEGACY_STATUS = {"ok": JobStatus.SUCCESS, "error": JobStatus.FAILURE}


def _parse_status(raw: Any) -> JobStatus | None:
    if not raw:
        return None
    try:
        return JobStatus(raw)
    except ValueError:
        return _LEGACY_STATUS.get(raw)


@dataclass
class JobState:
    """Mutable run bookkeeping. An empty state means "never evaluated".

    Unrecognised keys (including a ``lastStatus`` this version cannot map)
    are kept in ``_extra`` and written back until a new run replaces them.
    """

    last_run_at: datetime | None = None
    last_status: JobStatus | None = None
    run_count: int = 0
    last_error: str | None = None
    _extra: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_run(self) -> bool:
        return self.run_count > 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self._extra)
        if self.last_run_at is not None:
            data["lastRunAt"] = self.last_run_at.isoformat()
        if self.last_status is not None:
            data["lastStatus"] = self.last_status.value
        if self.run_count:
            data["runCount"] = self.run_count
        if self.last_error:
            data["lastError"] = self.last_error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobState:
        run_count = int(data.get("runCount") or 0)
        if run_count < 0:
            raise ValueError(f"runCount must be non-negative, got {run_count}")
        status = _parse_status(data.get("lastStatus"))
        extra = {k: v for k, v in data.items() if k not in _STATE_KEYS}
        if status is None and data.get("lastStatus"):
            extra["lastStatus"] = data["lastStatus"]
        return cls(
            last_run_at=parse_instant(data.get("lastRunAt")),
            last_status=status,
            run_count=run_count,
            last_error=data.get("lastError"),
            _extra=extra,
        )


_STATE_KEYS = {"lastRunAt", "lastStatus", "runCount", "lastError"}


def _flag(data: dict[str, Any], key: str, *, default: bool) -> bool:
    """Read a boolean field. Only JSON booleans count; anything else is False."""
    value = data.get(key, default)
    if isinstance(value, bool):
        return value
    logger.warning(
        "job_field_not_boolean", extra={"field.name": key, "field.value": value}
    )
    return False


# ---------------------------------------------------------------------------
# Jobs and the store envelope
# ---------------------------------------------------------------------------

_JOB_KEYS = {
    "id",
    "name",
    "enabled",
    "schedule",
    "payload",
    "state",
    "deleteAfterRun",
    "createdAt",
    "updatedAt",
}


@dataclass
class Job:
    """A scheduled job: identity, schedule, payload and run state."""

    id: str
    name: str
    enabled: bool = True
    schedule: Schedule = field(
        default_factory=lambda: EverySchedule(DEFAULT_INTERVAL_SECONDS)
    )
    payload: Payload = field(default_factory=AgentTurnPayload)
    state: JobState = field(default_factory=JobState)
    delete_after_run: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime | None = None
    _extra: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = (
            ensure_utc(self.updated_at) if self.updated_at else self.created_at
        )

    @property
    def is_one_shot(self) -> bool:
        return isinstance(self.schedule, AtSchedule)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self._extra)
        data.update(
            {
                "id": self.id,
                "name": self.name,
                "enabled": self.enabled,
                "schedule": self.schedule.to_dict(),
                "payload": self.payload.to_dict(),
                "state": self.state.to_dict(),
                "deleteAfterRun": self.delete_after_run,
                "createdAt": self.created_at.isoformat(),
            }
        )
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        """Rebuild a job from its persisted form.

        Raises:
            ValueError: If the row is missing an id or holds malformed fields.
        """
        job_id = data.get("id")
        if not job_id:
            raise ValueError("job row has no id")
        return cls(
            id=str(job_id),
            name=str(data.get("name") or ""),
            enabled=_flag(data, "enabled", default=True),
            schedule=schedule_from_dict(dict(data.get("schedule") or {})),
            payload=payload_from_dict(dict(data.get("payload") or {})),
            state=JobState.from_dict(dict(data.get("state") or {})),
            delete_after_run=_flag(data, "deleteAfterRun", default=False),
            created_at=parse_instant(data.get("createdAt")) or utc_now(),
            updated_at=parse_instant(data.get("updatedAt")),
            _extra={k: v for k, v in data.items() if k not in _JOB_KEYS},
        )


@dataclass
class Store:
    """Versioned, insertion-ordered collection of jobs with unique ids.

    Job rows that fail to parse are kept verbatim in ``_unparsed`` and
    written back after the parsed jobs, so a save never drops them.
    """

    version: int = STORE_VERSION
    jobs: list[Job] = field(default_factory=list)
    _unparsed: list[dict[str, Any]] = field(default_factory=list, repr=False)

    def ids(self) -> list[str]:
        return [job.id for job in self.jobs]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "jobs": [job.to_dict() for job in self.jobs] + list(self._unparsed),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Store:
        """Rebuild a store, skipping malformed or duplicate job rows.

        Raises:
            ValueError: If ``version`` is not an integer or ``jobs`` is not
                a list.
        """
        version = data.get("version") or STORE_VERSION
        if isinstance(version, bool) or not isinstance(version, int):
            raise ValueError(f"store version must be an integer, got {version!r}")
        rows = data.get("jobs") or []
        if not isinstance(rows, list):
            raise ValueError(f"store jobs must be a list, got {type(rows).__name__}")
        if version > STORE_VERSION:
            logger.warning(
                "store_version_newer",
                extra={"store.version": version, "store.supported": STORE_VERSION},
            )

        jobs: list[Job] = []
        unparsed: list[dict[str, Any]] = []
        seen: set[str] = set()
        for index, row in enumerate(rows):
            try:
                job = Job.from_dict(row)
            except (AttributeError, TypeError, ValueError, KeyError) as e:
                logger.warning(
                    "job_row_invalid",
                    extra={"store.row": index, "error.message": str(e)},
                )
                if isinstance(row, dict):
                    unparsed.append(row)
                continue
            if job.id in seen:
                logger.warning(
                    "job_row_duplicate", extra={"store.row": index, "job.id": job.id}
                )
                continue
            seen.add(job.id)
            jobs.append(job)
        return cls(version=version, jobs=jobs, _unparsed=unparsed)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Outcome:
    """Result of one execution reported by the agent backend."""

    status: JobStatus
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == JobStatus.SUCCESS

    @classmethod
    def success(cls, detail: str | None = None) -> Outcome:
        return cls(JobStatus.SUCCESS, detail)

    @classmethod
    def failure(cls, detail: str | None = None) -> Outcome:
        return cls(JobStatus.FAILURE, detail)


# Agent backend: runs a payload and reports how it went
Executor = Callable[[Payload], Awaitable[Outcome]]

# Notification sink, called only for payloads with deliver=True
DeliverySink = Callable[[Job, Outcome], Awaitable[None]]
