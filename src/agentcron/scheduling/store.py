"""Job store operations and JSON file persistence.

The mutation helpers (``add_job``, ``remove_job``, ``update_job``) change
the Store in place and return it. They do no locking of their own: callers
hold exclusive access, either the engine's lock or ``JsonFileStore.mutate``.
"""

from __future__ import annotations

import copy
import fcntl
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Protocol, TypeVar

from agentcron.errors import DuplicateIdError, NotFoundError
from agentcron.scheduling.schedule import validate_schedule
from agentcron.scheduling.types import Job, Store, utc_now

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

JobMutation = Callable[[Job], None]


def get_job(store: Store, job_id: str) -> Job | None:
    return next((job for job in store.jobs if job.id == job_id), None)


def add_job(store: Store, job: Job, *, default_timezone: str = "UTC") -> Store:
    """Append a job.

    Raises:
        DuplicateIdError: If a job with the same id exists.
        InvalidScheduleError: If the job's schedule cannot be evaluated.
    """
    if get_job(store, job.id) is not None:
        raise DuplicateIdError(job.id)
    validate_schedule(job.schedule, default_timezone=default_timezone)
    store.jobs.append(job)
    return store


def remove_job(store: Store, job_id: str) -> Store:
    """Drop a job by id. Removing an absent id is a no-op."""
    store.jobs = [job for job in store.jobs if job.id != job_id]
    return store


def update_job(
    store: Store,
    job_id: str,
    mutation: JobMutation,
    *,
    default_timezone: str = "UTC",
) -> Store:
    """Apply ``mutation`` to a job.

    The mutation runs against a copy; the copy replaces the stored job only
    if it keeps its id and any new schedule validates, so a failed update
    leaves the store untouched.

    Raises:
        NotFoundError: If no job has ``job_id``.
        ValueError: If the mutation changes the job id.
        InvalidScheduleError: If the mutation installs an invalid schedule.
    """
    for index, job in enumerate(store.jobs):
        if job.id != job_id:
            continue
        updated = copy.deepcopy(job)
        mutation(updated)
        if updated.id != job_id:
            raise ValueError(f"Job id is immutable: {job_id} -> {updated.id}")
        if updated.schedule != job.schedule:
            validate_schedule(updated.schedule, default_timezone=default_timezone)
        updated.updated_at = utc_now()
        store.jobs[index] = updated
        return store
    raise NotFoundError(job_id)


class StorePersistence(Protocol):
    """Load/save contract for the job store."""

    def load(self) -> Store:
        """Return the persisted store, or a fresh one if none is readable."""
        ...

    def save(self, store: Store) -> None:
        """Persist the store, raising on failure."""
        ...


class JsonFileStore:
    """Persist the store as one JSON document.

    Storage layout::

        {path}            {"version": 1, "jobs": [...]}
        {path}.lock       advisory lock for out-of-process writers
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()
        self._lock_file = self._path.with_name(self._path.name + ".lock")

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Store:
        if not self._path.exists():
            return Store()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(
                "job_store_unreadable",
                extra={"file.path": str(self._path), "error.message": str(e)},
            )
            return Store()
        if not isinstance(raw, dict):
            logger.warning("job_store_corrupt", extra={"file.path": str(self._path)})
            return Store()
        try:
            return Store.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.warning(
                "job_store_corrupt",
                extra={"file.path": str(self._path), "error.message": str(e)},
            )
            return Store()

    def save(self, store: Store) -> None:
        _write_json_atomic(self._path, store.to_dict())
        logger.debug(
            "job_store_saved",
            extra={"file.path": str(self._path), "store.jobs": len(store.jobs)},
        )

    def mutate(self, fn: Callable[[Store], _T]) -> _T:
        """Load, apply ``fn`` and save while holding the file lock.

        Nothing is written if ``fn`` raises.
        """
        self._lock_file.parent.mkdir(parents=True, exist_ok=True)
        with self._lock_file.open("a+") as lockf:
            with _file_lock(lockf):
                store = self.load()
                result = fn(store)
                self.save(store)
                return result


@contextmanager
def _file_lock(file: IO) -> Iterator[None]:
    try:
        fcntl.flock(file.fileno(), fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(file.fileno(), fcntl.LOCK_UN)


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON atomically via tempfile + fsync + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(data, ensure_ascii=False, indent=2))
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        Path(tmp).replace(path)
    except BaseException:
        try:
            Path(tmp).unlink()
        except OSError:
            pass
        raise
