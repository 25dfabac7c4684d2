"""Scheduler engine: evaluates jobs on each tick and fires the due ones.

The engine owns the in-memory Store. Every mutation (tick bookkeeping,
management operations) runs under a single asyncio lock and is followed by
a save, so a persisted snapshot never reflects a torn write. Executions run
outside the lock as one task per job; a job that is still firing is skipped
by later ticks until its execution resolves.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from agentcron.errors import InvalidScheduleError, NotFoundError
from agentcron.scheduling import store as store_ops
from agentcron.scheduling.schedule import next_fire_after
from agentcron.scheduling.store import JobMutation, StorePersistence
from agentcron.scheduling.types import (
    AgentTurnPayload,
    AtSchedule,
    DeliverySink,
    EverySchedule,
    Executor,
    Job,
    JobStatus,
    Outcome,
    Payload,
    Store,
    UnknownPayload,
    ensure_utc,
    utc_now,
)

if TYPE_CHECKING:
    from agentcron.config.models import AgentCronConfig

logger = logging.getLogger(__name__)

# Heartbeat every 60 polls (~5 min at 5s interval)
HEARTBEAT_POLLS = 60


class JobPhase(StrEnum):
    """Where a job sits in the fire cycle at a given instant."""

    IDLE = "idle"
    DUE = "due"
    FIRING = "firing"
    REMOVED = "removed"


def compute_next_run(job: Job, *, default_timezone: str = "UTC") -> datetime | None:
    """Next instant ``job`` becomes due, ignoring its enabled flag.

    The reference is the last fire, or the job's creation time if it never
    ran. ``every`` schedules without an anchor are anchored at creation. An
    ``at`` job that has fired once is exhausted.

    Raises:
        InvalidScheduleError: If the schedule cannot be evaluated.
    """
    schedule = job.schedule
    if isinstance(schedule, AtSchedule) and job.state.has_run:
        return None
    if isinstance(schedule, EverySchedule) and schedule.anchor is None:
        schedule = dataclasses.replace(schedule, anchor=job.created_at)
    reference = job.state.last_run_at or job.created_at
    return next_fire_after(schedule, reference, default_timezone=default_timezone)


class SchedulerEngine:
    """Fires due jobs against an agent backend and keeps their state.

    Example:
        engine = SchedulerEngine(JsonFileStore(path), executor=run_agent_turn)
        await engine.start()      # poll loop, one tick every poll_interval
        ...
        await engine.stop()
    """

    def __init__(
        self,
        persistence: StorePersistence,
        executor: Executor | None = None,
        *,
        deliver: DeliverySink | None = None,
        poll_interval: float = 5.0,
        execution_timeout: float | None = None,
        timezone: str = "UTC",
    ):
        self._persistence = persistence
        self._executor = executor
        self._deliver = deliver
        self._poll_interval = poll_interval
        self._execution_timeout = execution_timeout
        self._timezone = timezone
        self._store: Store | None = None
        self._lock = asyncio.Lock()
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._running = False
        self._task: asyncio.Task | None = None
        self._poll_count = 0
        self._dirty = False
        self._persistence_error: str | None = None

    @classmethod
    def from_config(
        cls,
        config: AgentCronConfig,
        executor: Executor | None = None,
        *,
        deliver: DeliverySink | None = None,
    ) -> SchedulerEngine:
        from agentcron.scheduling.store import JsonFileStore

        return cls(
            JsonFileStore(config.store_path),
            executor,
            deliver=deliver,
            poll_interval=config.scheduler.poll_interval,
            execution_timeout=config.scheduler.execution_timeout,
            timezone=config.timezone,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timezone(self) -> str:
        return self._timezone

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        async with self._lock:
            store = self._load_store()
        self._running = True
        logger.info(
            "scheduler_started",
            extra={
                "store.jobs": len(store.jobs),
                "scheduler.poll_interval": self._poll_interval,
            },
        )
        self._task = asyncio.create_task(self._poll_loop(), name="agentcron-poll")

    async def stop(self) -> None:
        """Stop polling and wait for in-flight executions to settle."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.wait_idle()
        async with self._lock:
            self._flush()
        logger.info("scheduler_stopped")

    async def wait_idle(self) -> None:
        """Wait until no job is firing."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self._poll_count += 1
                if self._poll_count % HEARTBEAT_POLLS == 0:
                    logger.info(
                        "scheduler_heartbeat",
                        extra={
                            "poll.count": self._poll_count,
                            "scheduler.in_flight": len(self._in_flight),
                        },
                    )
                await self.tick()
            except Exception as e:
                logger.error("scheduler_tick_error", extra={"error.message": str(e)})
            await asyncio.sleep(self._poll_interval)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Evaluate every job at ``now`` and start firing the due ones.

        Returns the ids of the jobs that started firing. Executions continue
        in the background; use ``wait_idle()`` or ``run_due_jobs()`` to wait.
        """
        now = ensure_utc(now) if now else utc_now()
        fired: list[str] = []

        async with self._lock:
            store = self._load_store()
            for job in list(store.jobs):
                if not job.enabled or job.id in self._in_flight:
                    continue

                try:
                    due = self._due_at(job)
                except InvalidScheduleError as e:
                    logger.warning(
                        "job_schedule_invalid",
                        extra={"job.id": job.id, "error.message": str(e)},
                    )
                    continue

                logger.debug(
                    "job_evaluated",
                    extra={
                        "job.id": job.id,
                        "job.kind": job.schedule.kind,
                        "job.due_at": due.isoformat() if due else None,
                        "tick.now": now.isoformat(),
                    },
                )

                if due is None:
                    if self._is_expired_one_shot(job):
                        store_ops.remove_job(store, job.id)
                        self._dirty = True
                        logger.warning(
                            "expired_one_shot_removed",
                            extra={"job.id": job.id, "job.name": job.name},
                        )
                    continue
                if due > now:
                    continue

                logger.info(
                    "job_fired",
                    extra={
                        "job.id": job.id,
                        "job.name": job.name,
                        "job.due_at": due.isoformat(),
                        "job.delay_seconds": round((now - due).total_seconds(), 1),
                    },
                )
                self._start_fire(job, now)
                fired.append(job.id)

            self._flush()

        return fired

    async def run_due_jobs(self, now: datetime | None = None) -> int:
        """Tick once and wait for the resulting executions."""
        fired = await self.tick(now)
        await self.wait_idle()
        return len(fired)

    def phase(self, job_id: str, now: datetime | None = None) -> JobPhase:
        now = ensure_utc(now) if now else utc_now()
        job = store_ops.get_job(self._load_store(), job_id)
        if job is None:
            return JobPhase.REMOVED
        if job_id in self._in_flight:
            return JobPhase.FIRING
        if not job.enabled:
            return JobPhase.IDLE
        try:
            due = compute_next_run(job, default_timezone=self._timezone)
        except InvalidScheduleError:
            return JobPhase.IDLE
        return JobPhase.DUE if due is not None and due <= now else JobPhase.IDLE

    def _due_at(self, job: Job) -> datetime | None:
        schedule = job.schedule
        if isinstance(schedule, EverySchedule) and schedule.anchor is None:
            # Pin the grid so results survive restarts
            job.schedule = dataclasses.replace(schedule, anchor=job.created_at)
            self._dirty = True
        return compute_next_run(job, default_timezone=self._timezone)

    @staticmethod
    def _is_expired_one_shot(job: Job) -> bool:
        return (
            isinstance(job.schedule, AtSchedule)
            and job.delete_after_run
            and not job.state.has_run
        )

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def _start_fire(self, job: Job, fired_at: datetime) -> asyncio.Task[None]:
        task = asyncio.create_task(
            self._fire(job.id, job.created_at, job.payload, fired_at),
            name=f"agentcron-{job.id}",
        )
        self._in_flight[job.id] = task
        return task

    async def _fire(
        self,
        job_id: str,
        created_at: datetime,
        payload: Payload,
        fired_at: datetime,
    ) -> None:
        try:
            outcome = await self._execute(job_id, payload)
            async with self._lock:
                job = self._record_outcome(job_id, created_at, outcome, fired_at)
                self._flush()
            if job is not None:
                await self._maybe_deliver(job, payload, outcome)
        finally:
            self._in_flight.pop(job_id, None)

    async def _execute(self, job_id: str, payload: Payload) -> Outcome:
        if isinstance(payload, UnknownPayload):
            return Outcome(
                JobStatus.SKIPPED, f"Unsupported payload kind: {payload.kind}"
            )
        if self._executor is None:
            return Outcome(JobStatus.SKIPPED, "No executor configured")

        try:
            if self._execution_timeout:
                result: Any = await asyncio.wait_for(
                    self._executor(payload), timeout=self._execution_timeout
                )
            else:
                result = await self._executor(payload)
        except TimeoutError:
            logger.warning(
                "job_execution_timeout",
                extra={"job.id": job_id, "timeout.seconds": self._execution_timeout},
            )
            return Outcome.failure(f"Timed out after {self._execution_timeout}s")
        except Exception as e:
            logger.error(
                "job_execution_error",
                extra={"job.id": job_id, "error.message": str(e)},
            )
            return Outcome.failure(str(e) or type(e).__name__)

        if isinstance(result, Outcome):
            return result
        # Backends that just return text (or nothing) succeeded
        return Outcome.success(result if isinstance(result, str) else None)

    def _record_outcome(
        self, job_id: str, created_at: datetime, outcome: Outcome, fired_at: datetime
    ) -> Job | None:
        store = self._load_store()
        job = store_ops.get_job(store, job_id)
        # A different created_at means the id was reused by a new job
        if job is None or job.created_at != created_at:
            logger.info("job_removed_while_firing", extra={"job.id": job_id})
            return None

        job.state.last_run_at = fired_at
        job.state.last_status = outcome.status
        job.state.run_count += 1
        job.state.last_error = None if outcome.ok else outcome.detail
        job.updated_at = utc_now()
        self._dirty = True

        log_fields = {
            "job.id": job.id,
            "job.status": outcome.status.value,
            "job.run_count": job.state.run_count,
        }
        if outcome.ok:
            logger.info("job_completed", extra=log_fields)
        else:
            logger.warning(
                "job_not_completed",
                extra={**log_fields, "error.message": outcome.detail},
            )

        if outcome.ok and job.delete_after_run:
            store_ops.remove_job(store, job.id)
            logger.info("job_removed_after_run", extra={"job.id": job.id})
        elif outcome.ok and job.is_one_shot:
            job.enabled = False
        return job

    async def _maybe_deliver(self, job: Job, payload: Payload, outcome: Outcome) -> None:
        if self._deliver is None:
            return
        if not isinstance(payload, AgentTurnPayload) or not payload.deliver:
            return
        try:
            await self._deliver(copy.deepcopy(job), outcome)
        except Exception as e:
            logger.error(
                "job_delivery_error",
                extra={"job.id": job.id, "error.message": str(e)},
            )

    # ------------------------------------------------------------------
    # Management operations
    # ------------------------------------------------------------------

    async def add_job(self, job: Job) -> Job:
        """Add a job and persist it.

        Raises:
            DuplicateIdError: If the id is taken.
            InvalidScheduleError: If the schedule cannot be evaluated.
        """
        async with self._lock:
            store = self._load_store()
            store_ops.add_job(store, job, default_timezone=self._timezone)
            self._save()
            snapshot = copy.deepcopy(job)
        logger.info(
            "job_added",
            extra={"job.id": job.id, "job.name": job.name, "job.kind": job.schedule.kind},
        )
        return snapshot

    async def remove_job(self, job_id: str) -> bool:
        """Remove a job. Returns False if it was already absent."""
        async with self._lock:
            store = self._load_store()
            if store_ops.get_job(store, job_id) is None:
                return False
            store_ops.remove_job(store, job_id)
            self._save()
        logger.info("job_removed", extra={"job.id": job_id})
        return True

    async def update_job(self, job_id: str, mutation: JobMutation) -> Job:
        """Apply ``mutation`` to a job and persist it.

        Raises:
            NotFoundError: If the job does not exist.
            InvalidScheduleError: If the new schedule cannot be evaluated.
        """
        async with self._lock:
            store = self._load_store()
            store_ops.update_job(
                store, job_id, mutation, default_timezone=self._timezone
            )
            self._save()
            job = store_ops.get_job(store, job_id)
            snapshot = copy.deepcopy(job)
        logger.info("job_updated", extra={"job.id": job_id})
        return snapshot

    async def enable_job(self, job_id: str, enabled: bool = True) -> Job | None:
        """Enable or disable a job. Returns None if it does not exist.

        Disabling takes effect at the next tick; an execution already in
        flight is not interrupted.
        """

        def set_enabled(job: Job) -> None:
            job.enabled = enabled

        try:
            return await self.update_job(job_id, set_enabled)
        except NotFoundError:
            return None

    async def run_job(self, job_id: str, *, force: bool = False) -> bool:
        """Fire a job now regardless of its schedule.

        Disabled jobs only run with ``force``. A job that is already firing
        is not started again. Returns True if the job ran.
        """
        async with self._lock:
            job = store_ops.get_job(self._load_store(), job_id)
            if job is None or job_id in self._in_flight:
                return False
            if not job.enabled and not force:
                return False
            logger.info("job_run_manually", extra={"job.id": job_id})
            task = self._start_fire(job, utc_now())
        await task
        return True

    def get_job(self, job_id: str) -> Job | None:
        job = store_ops.get_job(self._load_store(), job_id)
        return copy.deepcopy(job) if job else None

    def list_jobs(self, *, include_disabled: bool = False) -> list[Job]:
        """Snapshot of the jobs, soonest next fire first (never-due last)."""
        jobs = [
            job
            for job in self._load_store().jobs
            if include_disabled or job.enabled
        ]
        far = ensure_utc(datetime.max)

        def sort_key(job: Job) -> datetime:
            try:
                return compute_next_run(job, default_timezone=self._timezone) or far
            except InvalidScheduleError:
                return far

        return [copy.deepcopy(job) for job in sorted(jobs, key=sort_key)]

    def next_wake(self) -> datetime | None:
        """Earliest next fire among enabled jobs that are not firing."""
        upcoming: list[datetime] = []
        for job in self._load_store().jobs:
            if not job.enabled or job.id in self._in_flight:
                continue
            try:
                next_run = compute_next_run(job, default_timezone=self._timezone)
            except InvalidScheduleError:
                continue
            if next_run is not None:
                upcoming.append(next_run)
        return min(upcoming, default=None)

    def status(self) -> dict[str, Any]:
        next_wake = self.next_wake()
        return {
            "running": self._running,
            "jobs": len(self._load_store().jobs),
            "in_flight": sorted(self._in_flight),
            "next_wake_at": next_wake.isoformat() if next_wake else None,
            "persistence_error": self._persistence_error,
        }

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _load_store(self) -> Store:
        if self._store is None:
            self._store = self._persistence.load()
        return self._store

    def _save(self) -> None:
        """Persist after a management operation; failures reach the caller."""
        self._dirty = True
        try:
            self._persistence.save(self._load_store())
        except Exception as e:
            self._persistence_error = str(e)
            raise
        self._dirty = False
        self._persistence_error = None

    def _flush(self) -> None:
        """Persist pending tick bookkeeping; failures are retried next tick."""
        if not self._dirty or self._store is None:
            return
        try:
            self._persistence.save(self._store)
        except Exception as e:
            self._persistence_error = str(e)
            logger.error(
                "job_store_persist_failed", extra={"error.message": str(e)}
            )
            return
        self._dirty = False
        self._persistence_error = None
