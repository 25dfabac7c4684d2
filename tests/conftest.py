"""Shared test fixtures and factories."""

import asyncio
import copy
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from agentcron.config.paths import ENV_VAR, get_agentcron_home
from agentcron.scheduling.engine import SchedulerEngine
from agentcron.scheduling.store import JsonFileStore
from agentcron.scheduling.types import Job, Outcome, Payload, Store

# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path: Path) -> Iterator[Path]:
    """Point AGENTCRON_HOME at a temp dir so tests never touch ~/.agentcron."""
    home = tmp_path / "agentcron-home"
    monkeypatch.setenv(ENV_VAR, str(home))
    monkeypatch.chdir(tmp_path)
    get_agentcron_home.cache_clear()
    yield home
    get_agentcron_home.cache_clear()


@pytest.fixture
def t0() -> datetime:
    """A fixed reference instant (a Monday, 09:00 UTC)."""
    return datetime(2026, 1, 5, 9, 0, 0, tzinfo=UTC)


# =============================================================================
# Collaborators
# =============================================================================


class RecordingExecutor:
    """Agent backend double that records payloads and returns scripted outcomes."""

    def __init__(
        self,
        outcome: Outcome | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.outcome = outcome or Outcome.success("done")
        self.error = error
        self.delay = delay
        self.calls: list[Payload] = []
        self.release = asyncio.Event()
        self.block = False

    async def __call__(self, payload: Payload) -> Outcome:
        self.calls.append(payload)
        if self.block:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.outcome


class MemoryPersistence:
    """In-memory StorePersistence that keeps deep copies of what was saved."""

    def __init__(self, store: Store | None = None):
        self.saved: Store | None = copy.deepcopy(store) if store else None
        self.save_count = 0
        self.fail_with: Exception | None = None

    def load(self) -> Store:
        return copy.deepcopy(self.saved) if self.saved else Store()

    def save(self, store: Store) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.saved = copy.deepcopy(store)
        self.save_count += 1


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest.fixture
def make_engine(persistence: MemoryPersistence, executor: RecordingExecutor):
    """Factory for an engine preloaded with jobs."""

    def _make(*jobs: Job, **kwargs) -> SchedulerEngine:
        if jobs:
            persistence.saved = Store(jobs=list(jobs))
        kwargs.setdefault("executor", executor)
        return SchedulerEngine(persistence, **kwargs)

    return _make


# =============================================================================
# Files
# =============================================================================


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "cron" / "jobs.json"


@pytest.fixture
def file_store(store_path: Path) -> JsonFileStore:
    return JsonFileStore(store_path)


@pytest.fixture
def config_toml_content(store_path: Path) -> str:
    """Valid TOML config content."""
    return f"""
store_path = "{store_path}"
timezone = "Europe/Paris"

[scheduler]
poll_interval = 2.5
execution_timeout = 60

[logging]
level = "DEBUG"
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    """Create a temporary config file."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(config_toml_content)
    return config_path


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
