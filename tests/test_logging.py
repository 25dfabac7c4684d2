"""Tests for logging configuration."""

import json
import logging
import os
import time

import pytest

from agentcron.config.models import AgentCronConfig, LoggingConfig
from agentcron.config.paths import get_logs_path
from agentcron.logging import (
    LOG_LEVEL_ENV_VAR,
    ComponentFormatter,
    JSONLHandler,
    configure_logging,
    configure_logging_from_config,
    prune_old_logs,
    resolve_level,
)


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(name: str = "agentcron.scheduling.engine", msg: str = "job_fired", **extra):
    record = logging.makeLogRecord({"name": name, "msg": msg, "levelname": "INFO"})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestResolveLevel:
    def test_explicit_level(self, monkeypatch):
        monkeypatch.setenv(LOG_LEVEL_ENV_VAR, "ERROR")
        assert resolve_level("debug") == "DEBUG"

    def test_env_var(self, monkeypatch):
        monkeypatch.setenv(LOG_LEVEL_ENV_VAR, "warning")
        assert resolve_level() == "WARNING"

    def test_default_and_unknown(self, monkeypatch):
        monkeypatch.delenv(LOG_LEVEL_ENV_VAR, raising=False)
        assert resolve_level() == "INFO"
        assert resolve_level("chatty") == "INFO"


class TestComponentFormatter:
    def test_shortens_component_and_appends_extra(self):
        formatter = ComponentFormatter("%(component)s | %(message)s")
        record = _record(**{"job.id": "abc", "job.run_count": 2})

        assert formatter.format(record) == "scheduling | job_fired job.id=abc job.run_count=2"

    def test_foreign_logger(self):
        formatter = ComponentFormatter("%(component)s | %(message)s")
        assert formatter.format(_record(name="croniter")) == "croniter | job_fired"


class TestJSONLHandler:
    def test_writes_entry_with_extra(self, tmp_path):
        handler = JSONLHandler(tmp_path / "logs")
        try:
            handler.emit(_record(**{"job.id": "abc"}))
        finally:
            handler.close()

        files = list((tmp_path / "logs").glob("*.jsonl"))
        assert len(files) == 1
        entry = json.loads(files[0].read_text().strip())
        assert entry["component"] == "scheduling"
        assert entry["message"] == "job_fired"
        assert entry["extra"] == {"job.id": "abc"}

    def test_configure_logging_to_file(self, tmp_path):
        logs_dir = tmp_path / "logs"
        configure_logging(level="INFO", log_to_file=True, logs_dir=logs_dir)

        logging.getLogger("agentcron.scheduling.engine").info(
            "scheduler_started", extra={"store.jobs": 3}
        )
        logging.getLogger("agentcron.scheduling.engine").debug("too quiet")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = [
            json.loads(line)
            for path in logs_dir.glob("*.jsonl")
            for line in path.read_text().splitlines()
        ]
        assert [line["message"] for line in lines] == ["scheduler_started"]
        assert lines[0]["extra"] == {"store.jobs": 3}


class TestPruneOldLogs:
    def test_prunes_only_old_jsonl(self, tmp_path):
        old = tmp_path / "2020-01-01.jsonl"
        recent = tmp_path / "today.jsonl"
        other = tmp_path / "notes.txt"
        for path in (old, recent, other):
            path.write_text("{}\n")
        stale = time.time() - 30 * 86400
        os.utime(old, (stale, stale))
        os.utime(other, (stale, stale))

        assert prune_old_logs(tmp_path, retention_days=7) == 1
        assert not old.exists()
        assert recent.exists()
        assert other.exists()

    def test_missing_dir(self, tmp_path):
        assert prune_old_logs(tmp_path / "nope") == 0


class TestConfigureFromConfig:
    def test_applies_logging_section(self, monkeypatch):
        monkeypatch.delenv(LOG_LEVEL_ENV_VAR, raising=False)
        logs_dir = get_logs_path()
        logs_dir.mkdir(parents=True)
        stale_file = logs_dir / "2020-01-01.jsonl"
        stale_file.write_text("{}\n")
        stale = time.time() - 3 * 86400
        os.utime(stale_file, (stale, stale))
        config = AgentCronConfig(
            logging=LoggingConfig(level="WARNING", log_to_file=True, retention_days=2)
        )

        configure_logging_from_config(config)
        logging.getLogger("agentcron.scheduling.engine").warning("job_not_completed")
        logging.getLogger("agentcron.scheduling.engine").info("job_completed")

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert any(isinstance(h, JSONLHandler) for h in root.handlers)
        assert not stale_file.exists()
        lines = [
            json.loads(line)
            for path in logs_dir.glob("*.jsonl")
            for line in path.read_text().splitlines()
        ]
        assert [line["message"] for line in lines] == ["job_not_completed"]

    def test_explicit_level_wins(self):
        config = AgentCronConfig(logging=LoggingConfig(level="ERROR"))
        configure_logging_from_config(config, level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

    def test_rich_console(self):
        from rich.logging import RichHandler

        configure_logging_from_config(AgentCronConfig(logging=LoggingConfig(use_rich=True)))

        handlers = logging.getLogger().handlers
        assert any(isinstance(h, RichHandler) for h in handlers)
        assert not any(isinstance(h, JSONLHandler) for h in handlers)
        assert not get_logs_path().exists()
