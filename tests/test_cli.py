"""Tests for CLI commands."""

import json
import logging

import pytest

from agentcron import __version__
from agentcron.cli.app import app
from agentcron.config.paths import get_logs_path
from agentcron.logging import JSONLHandler
from agentcron.scheduling.store import JsonFileStore
from agentcron.scheduling.types import (
    AtSchedule,
    CronSchedule,
    EverySchedule,
    Job,
    Store,
)


@pytest.fixture(autouse=True)
def restore_root_logging():
    """The CLI callback reconfigures logging; put the root handlers back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def run(cli_runner, config_file):
    """Invoke the CLI against the temp config file."""

    def _run(*args: str):
        return cli_runner.invoke(app, [*args, "--config", str(config_file)])

    return _run


class TestCLIApp:
    def test_help(self, cli_runner):
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "jobs" in result.stdout
        assert "config" in result.stdout

    def test_version(self, cli_runner):
        result = cli_runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"agentcron {__version__}" in result.stdout


class TestConfigCommand:
    def test_validate(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["config", "validate", "--path", str(config_file)])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.stdout

    def test_validate_invalid(self, cli_runner, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text('timezone = "Mars/Olympus"\n')

        result = cli_runner.invoke(app, ["config", "validate", "--path", str(bad)])

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.stdout

    def test_validate_missing_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["config", "validate", "--path", str(tmp_path / "nope.toml")]
        )
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_show(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["config", "show", "--path", str(config_file)])
        assert result.exit_code == 0
        assert "Europe/Paris" in result.stdout
        assert "2.5s" in result.stdout

    def test_show_defaults_without_file(self, cli_runner):
        result = cli_runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "UTC" in result.stdout

    def test_paths(self, cli_runner):
        result = cli_runner.invoke(app, ["config", "paths"])
        assert result.exit_code == 0
        assert "store" in result.stdout

    def test_unknown_action(self, cli_runner):
        result = cli_runner.invoke(app, ["config", "frobnicate"])
        assert result.exit_code == 1
        assert "Unknown action" in result.stdout


class TestJobsAdd:
    def test_add_every(self, run, store_path):
        result = run("jobs", "add", "-m", "check inbox", "--every", "300", "--id", "inbox")

        assert result.exit_code == 0, result.stdout
        assert "Added job inbox" in result.stdout
        store = JsonFileStore(store_path).load()
        job = store.jobs[0]
        assert job.schedule == EverySchedule(interval_seconds=300)
        assert job.payload.message == "check inbox"
        assert job.name == "check inbox"

    def test_add_cron_with_delivery(self, run, store_path):
        result = run(
            "jobs", "add",
            "-m", "morning brief",
            "--name", "Brief",
            "--cron", "0 8 * * 1-5",
            "--tz", "America/New_York",
            "--deliver", "--channel", "telegram", "--to", "42",
            "--id", "brief",
        )

        assert result.exit_code == 0, result.stdout
        job = JsonFileStore(store_path).load().jobs[0]
        assert job.schedule == CronSchedule("0 8 * * 1-5", timezone="America/New_York")
        assert job.payload.deliver is True
        assert job.payload.channel == "telegram"
        assert job.payload.to == "42"

    def test_add_at(self, run, store_path):
        result = run(
            "jobs", "add", "-m", "call mom", "--at", "2030-05-01T18:00:00",
            "--delete-after-run", "--id", "mom",
        )

        assert result.exit_code == 0, result.stdout
        job = JsonFileStore(store_path).load().jobs[0]
        assert isinstance(job.schedule, AtSchedule)
        assert job.schedule.at.isoformat() == "2030-05-01T18:00:00+00:00"
        assert job.delete_after_run is True

    @pytest.mark.parametrize(
        "schedule_args",
        [[], ["--every", "60", "--cron", "* * * * *"]],
    )
    def test_requires_exactly_one_schedule(self, run, schedule_args):
        result = run("jobs", "add", "-m", "hi", *schedule_args)
        assert result.exit_code == 1
        assert "exactly one" in result.stdout

    def test_tz_requires_cron(self, run):
        result = run("jobs", "add", "-m", "hi", "--every", "60", "--tz", "UTC")
        assert result.exit_code == 1

    def test_invalid_cron(self, run, store_path):
        result = run("jobs", "add", "-m", "hi", "--cron", "every tuesday")
        assert result.exit_code == 1
        assert JsonFileStore(store_path).load().jobs == []

    def test_duplicate_id(self, run):
        assert run("jobs", "add", "-m", "a", "--every", "60", "--id", "dup").exit_code == 0
        result = run("jobs", "add", "-m", "b", "--every", "60", "--id", "dup")
        assert result.exit_code == 1
        assert "already exists" in result.stdout


class TestJobsManage:
    @pytest.fixture
    def seeded(self, store_path, t0):
        JsonFileStore(store_path).save(
            Store(
                jobs=[
                    Job(id="j1", name="One", created_at=t0),
                    Job(id="j2", name="Two", enabled=False, created_at=t0),
                ]
            )
        )
        return store_path

    def test_list_empty(self, run):
        result = run("jobs", "list")
        assert result.exit_code == 0
        assert "No scheduled jobs found" in result.stdout

    def test_list_hides_disabled(self, run, seeded):
        result = run("jobs", "list")
        assert result.exit_code == 0
        assert "j1" in result.stdout
        assert "j2" not in result.stdout
        assert "Total: 1 job(s)" in result.stdout

    def test_list_all(self, run, seeded):
        result = run("jobs", "list", "--all")
        assert "j2" in result.stdout
        assert "Total: 2 job(s)" in result.stdout

    def test_remove(self, run, seeded):
        result = run("jobs", "remove", "j1")
        assert result.exit_code == 0
        assert "Removed job j1" in result.stdout
        assert JsonFileStore(seeded).load().ids() == ["j2"]

    def test_remove_missing(self, run, seeded):
        result = run("jobs", "remove", "ghost")
        assert result.exit_code == 1
        assert "No job found" in result.stdout

    def test_enable_and_disable(self, run, seeded):
        assert run("jobs", "enable", "j2").exit_code == 0
        assert run("jobs", "disable", "j1").exit_code == 0

        raw = json.loads(seeded.read_text())
        enabled = {row["id"]: row["enabled"] for row in raw["jobs"]}
        assert enabled == {"j1": False, "j2": True}

    def test_enable_missing(self, run, seeded):
        result = run("jobs", "enable", "ghost")
        assert result.exit_code == 1
        assert "Job not found: ghost" in result.stdout

    def test_list_with_unevaluable_schedule(self, run, store_path, t0):
        JsonFileStore(store_path).save(
            Store(
                jobs=[
                    Job(id="j1", name="One", created_at=t0),
                    Job(
                        id="huge",
                        name="Huge",
                        schedule=EverySchedule(interval_seconds=10**12),
                        created_at=t0,
                    ),
                ]
            )
        )

        result = run("jobs", "list")

        assert result.exit_code == 0
        assert "huge" in result.stdout
        assert "Total: 2 job(s)" in result.stdout


class TestLoggingSettings:
    @pytest.fixture
    def logging_config(self, tmp_path, store_path):
        path = tmp_path / "logging.toml"
        path.write_text(
            f"""
store_path = "{store_path}"

[logging]
level = "WARNING"
log_to_file = true
"""
        )
        return path

    def test_jobs_command_applies_logging_section(self, cli_runner, logging_config):
        result = cli_runner.invoke(app, ["jobs", "list", "--config", str(logging_config)])

        assert result.exit_code == 0
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert any(isinstance(h, JSONLHandler) for h in root.handlers)
        assert get_logs_path().is_dir()

    def test_verbose_overrides_config_level(self, cli_runner, logging_config):
        result = cli_runner.invoke(
            app, ["--verbose", "jobs", "list", "--config", str(logging_config)]
        )

        assert result.exit_code == 0
        assert logging.getLogger().level == logging.DEBUG

    def test_config_level_used(self, run):
        assert run("jobs", "list").exit_code == 0
        assert logging.getLogger().level == logging.DEBUG
