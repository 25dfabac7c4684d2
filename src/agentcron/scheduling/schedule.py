"""Schedule evaluation.

``next_fire_after`` is a pure function over the closed set of schedule
kinds. Cron expressions are evaluated with croniter in the schedule's own
timezone and converted back to UTC, so "0 8 * * *" means 8 AM local time
across DST changes.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from croniter import croniter

from agentcron.errors import InvalidScheduleError
from agentcron.scheduling.types import (
    AtSchedule,
    CronSchedule,
    EverySchedule,
    Schedule,
    UnknownSchedule,
    ensure_utc,
)

CRON_FIELD_COUNT = 5

# Upper bound on croniter steps while skipping candidates <= reference
_MAX_CRON_STEPS = 8


def next_fire_after(
    schedule: Schedule,
    reference: datetime,
    *,
    default_timezone: str = "UTC",
) -> datetime | None:
    """Return the earliest fire instant strictly after ``reference``.

    Args:
        schedule: Schedule to evaluate.
        reference: Instant to search from (naive values are taken as UTC).
        default_timezone: Zone for cron schedules that do not name one.

    Returns:
        The next fire instant in UTC, or None if the schedule will not fire
        again (elapsed ``at`` schedules, unknown kinds).

    Raises:
        InvalidScheduleError: If the schedule cannot be evaluated.
    """
    reference = ensure_utc(reference)
    match schedule:
        case EverySchedule():
            return _next_every(schedule, reference)
        case CronSchedule():
            return _next_cron(schedule, reference, default_timezone)
        case AtSchedule():
            return schedule.at if schedule.at > reference else None
        case UnknownSchedule():
            return None
    raise InvalidScheduleError(f"Not a schedule: {schedule!r}")


def validate_schedule(schedule: Schedule, *, default_timezone: str = "UTC") -> None:
    """Reject schedules that could never be evaluated.

    Raises:
        InvalidScheduleError: On a non-positive or oversized interval, a
            malformed cron expression or timezone, or an unsupported kind.
    """
    match schedule:
        case EverySchedule():
            _next_every(schedule, datetime.now(UTC))
        case CronSchedule():
            _next_cron(schedule, datetime.now(UTC), default_timezone)
        case AtSchedule():
            pass
        case UnknownSchedule():
            raise InvalidScheduleError(f"Unsupported schedule kind: {schedule.kind}")
        case _:
            raise InvalidScheduleError(f"Not a schedule: {schedule!r}")


def describe_schedule(schedule: Schedule) -> str:
    """Short human-readable form, e.g. ``every 5m`` or ``cron 0 8 * * * (UTC)``."""
    match schedule:
        case EverySchedule():
            return f"every {format_interval(schedule.interval_seconds)}"
        case CronSchedule():
            return f"cron {schedule.expression} ({schedule.timezone or 'UTC'})"
        case AtSchedule():
            return f"at {schedule.at.isoformat()}"
        case UnknownSchedule():
            return f"{schedule.kind} (unsupported)"
    return "?"


def format_interval(seconds: int) -> str:
    if seconds % 86400 == 0:
        return f"{seconds // 86400}d"
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


def _check_interval(interval_seconds: object) -> int:
    if isinstance(interval_seconds, bool) or not isinstance(interval_seconds, int):
        raise InvalidScheduleError(
            f"Interval must be a whole number of seconds, got {interval_seconds!r}"
        )
    if interval_seconds <= 0:
        raise InvalidScheduleError(
            f"Interval must be positive, got {interval_seconds}"
        )
    return interval_seconds


def _next_every(schedule: EverySchedule, reference: datetime) -> datetime:
    interval = _check_interval(schedule.interval_seconds)
    anchor = schedule.anchor or reference
    try:
        step = timedelta(seconds=interval)
        # floor division keeps the result on the anchor grid for anchors on
        # either side of the reference
        periods = (reference - anchor) // step + 1
        return anchor + periods * step
    except OverflowError as e:
        raise InvalidScheduleError(
            f"Interval of {interval}s runs past the last representable date"
        ) from e


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError) as e:
        raise InvalidScheduleError(f"Unknown timezone: {name}") from e


def _next_cron(
    schedule: CronSchedule, reference: datetime, default_timezone: str
) -> datetime:
    expression = schedule.expression.strip()
    if len(expression.split()) != CRON_FIELD_COUNT:
        raise InvalidScheduleError(
            f"Cron expression must have {CRON_FIELD_COUNT} fields: {expression!r}"
        )
    tz = _zone(schedule.timezone or default_timezone)

    try:
        itr = croniter(expression, reference.astimezone(tz))
        candidate = itr.get_next(datetime)
        for _ in range(_MAX_CRON_STEPS):
            if candidate.astimezone(UTC) > reference:
                break
            candidate = itr.get_next(datetime)
    except (KeyError, ValueError, OverflowError) as e:
        # croniter's parse errors subclass ValueError
        raise InvalidScheduleError(
            f"Invalid cron expression {expression!r}: {e}"
        ) from e

    next_utc = candidate.astimezone(UTC)
    if next_utc <= reference:
        raise InvalidScheduleError(
            f"Cron expression {expression!r} did not advance past {reference}"
        )
    return next_utc
