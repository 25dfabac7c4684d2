"""Job management commands.

These commands edit the job file directly under its file lock. A running
scheduler keeps its own copy of the store in memory and will overwrite
edits made behind its back, so stop it before changing jobs here.
"""

import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import click
import typer

from agentcron.cli.console import console, create_table, dim, error, success, warning
from agentcron.config import AgentCronConfig
from agentcron.errors import AgentCronError
from agentcron.scheduling.store import JsonFileStore
from agentcron.scheduling.types import Job

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to configuration file"),
]


def _format_countdown(next_fire: datetime | None) -> str:
    """Format a countdown string for the next fire time."""
    if next_fire is None:
        return "[dim]never[/dim]"

    now = datetime.now(UTC)
    if next_fire <= now:
        return "[green]now[/green]"

    total_seconds = int((next_fire - now).total_seconds())

    if total_seconds < 60:
        return f"in {total_seconds}s"

    total_minutes = total_seconds // 60
    if total_minutes < 60:
        return f"in {total_minutes}m"

    hours = total_minutes // 60
    minutes = total_minutes % 60
    if hours < 24:
        if minutes:
            return f"in {hours}h {minutes}m"
        return f"in {hours}h"

    days = hours // 24
    hours = hours % 24
    if hours:
        return f"in {days}d {hours}h"
    return f"in {days}d"


def _load_settings(config_path: Path | None) -> AgentCronConfig:
    """Load the config and apply its [logging] section."""
    from agentcron.config import ConfigError, load_config
    from agentcron.logging import configure_logging_from_config

    try:
        settings = load_config(config_path)
    except (FileNotFoundError, ConfigError) as e:
        error(str(e))
        raise typer.Exit(1) from None

    verbose = (click.get_current_context().find_root().obj or {}).get("verbose")
    configure_logging_from_config(settings, level="DEBUG" if verbose else None)
    return settings


def _file_store(settings: AgentCronConfig) -> JsonFileStore:
    return JsonFileStore(settings.store_path)


def register(app: typer.Typer) -> None:
    """Register job subcommands."""
    jobs_app = typer.Typer(help="Manage scheduled jobs", no_args_is_help=True)
    app.add_typer(jobs_app, name="jobs")

    @jobs_app.command("list")
    def jobs_list(
        show_all: Annotated[
            bool,
            typer.Option("--all", "-a", help="Include disabled jobs"),
        ] = False,
        config: ConfigOption = None,
    ) -> None:
        """List scheduled jobs, soonest first."""
        from agentcron.errors import InvalidScheduleError
        from agentcron.scheduling.engine import compute_next_run
        from agentcron.scheduling.schedule import describe_schedule

        settings = _load_settings(config)
        store = _file_store(settings).load()
        jobs = [job for job in store.jobs if show_all or job.enabled]

        if not jobs:
            warning("No scheduled jobs found")
            return

        def next_run(job: Job) -> datetime | None:
            try:
                return compute_next_run(job, default_timezone=settings.timezone)
            except InvalidScheduleError:
                return None

        far = datetime.max.replace(tzinfo=UTC)
        rows = sorted(((job, next_run(job)) for job in jobs), key=lambda r: r[1] or far)

        table = create_table(
            None,
            [
                ("ID", "dim"),
                ("Name", ""),
                ("Schedule", ""),
                ("Enabled", ""),
                ("Last", ""),
                ("Runs", {"justify": "right"}),
                ("Next Fire", ""),
            ],
        )
        for job, next_fire in rows:
            status = job.state.last_status.value if job.state.last_status else "-"
            table.add_row(
                job.id,
                job.name,
                describe_schedule(job.schedule),
                "yes" if job.enabled else "[dim]no[/dim]",
                status,
                str(job.state.run_count),
                _format_countdown(next_fire) if job.enabled else "[dim]-[/dim]",
            )

        console.print(table)
        dim(f"Total: {len(jobs)} job(s)")

    @jobs_app.command("add")
    def jobs_add(
        message: Annotated[
            str,
            typer.Option("--message", "-m", help="Message sent to the agent"),
        ],
        name: Annotated[
            str | None,
            typer.Option("--name", "-n", help="Display name"),
        ] = None,
        every: Annotated[
            int | None,
            typer.Option("--every", help="Run every N seconds"),
        ] = None,
        cron: Annotated[
            str | None,
            typer.Option("--cron", help="Cron expression, e.g. '0 9 * * *'"),
        ] = None,
        tz: Annotated[
            str | None,
            typer.Option("--tz", help="IANA timezone for --cron"),
        ] = None,
        at: Annotated[
            datetime | None,
            typer.Option(
                "--at",
                help="Run once at this ISO time (UTC unless an offset is given)",
                formats=["%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"],
            ),
        ] = None,
        job_id: Annotated[
            str | None,
            typer.Option("--id", help="Job id (default: random 8-char hex)"),
        ] = None,
        deliver: Annotated[
            bool,
            typer.Option("--deliver", help="Push the result to a channel"),
        ] = False,
        channel: Annotated[
            str | None,
            typer.Option("--channel", help="Delivery channel, e.g. telegram"),
        ] = None,
        to: Annotated[
            str | None,
            typer.Option("--to", help="Delivery recipient"),
        ] = None,
        delete_after_run: Annotated[
            bool,
            typer.Option("--delete-after-run", help="Remove after the first successful run"),
        ] = False,
        config: ConfigOption = None,
    ) -> None:
        """Add a job. Exactly one of --every, --cron or --at is required."""
        from agentcron.scheduling import store as store_ops
        from agentcron.scheduling.types import (
            AgentTurnPayload,
            AtSchedule,
            CronSchedule,
            EverySchedule,
            Schedule,
        )

        chosen = [opt for opt in (every, cron, at) if opt is not None]
        if len(chosen) != 1:
            error("Specify exactly one of --every, --cron or --at")
            raise typer.Exit(1)
        if tz and cron is None:
            error("--tz only applies to --cron")
            raise typer.Exit(1)

        schedule: Schedule
        if every is not None:
            schedule = EverySchedule(interval_seconds=every)
        elif cron is not None:
            schedule = CronSchedule(expression=cron, timezone=tz)
        elif at is not None:
            schedule = AtSchedule(at=at)

        settings = _load_settings(config)
        job = Job(
            id=job_id or uuid.uuid4().hex[:8],
            name=name or message[:30] or "job",
            schedule=schedule,
            payload=AgentTurnPayload(
                message=message, deliver=deliver, channel=channel, to=to
            ),
            delete_after_run=delete_after_run,
        )

        try:
            _file_store(settings).mutate(
                lambda store: store_ops.add_job(
                    store, job, default_timezone=settings.timezone
                )
            )
        except AgentCronError as e:
            error(str(e))
            raise typer.Exit(1) from None

        success(f"Added job {job.id} ({job.name})")

    @jobs_app.command("remove")
    def jobs_remove(
        job_id: Annotated[str, typer.Argument(help="Job id")],
        config: ConfigOption = None,
    ) -> None:
        """Remove a job."""
        from agentcron.scheduling import store as store_ops

        settings = _load_settings(config)

        def remove(store) -> bool:
            existed = store_ops.get_job(store, job_id) is not None
            store_ops.remove_job(store, job_id)
            return existed

        if _file_store(settings).mutate(remove):
            success(f"Removed job {job_id}")
        else:
            error(f"No job found with ID {job_id}")
            raise typer.Exit(1)

    def _set_enabled(job_id: str, enabled: bool, config: Path | None) -> None:
        from agentcron.scheduling import store as store_ops

        settings = _load_settings(config)

        def apply(job: Job) -> None:
            job.enabled = enabled

        try:
            _file_store(settings).mutate(
                lambda store: store_ops.update_job(
                    store, job_id, apply, default_timezone=settings.timezone
                )
            )
        except AgentCronError as e:
            error(str(e))
            raise typer.Exit(1) from None

        success(f"{'Enabled' if enabled else 'Disabled'} job {job_id}")

    @jobs_app.command("enable")
    def jobs_enable(
        job_id: Annotated[str, typer.Argument(help="Job id")],
        config: ConfigOption = None,
    ) -> None:
        """Enable a job."""
        _set_enabled(job_id, True, config)

    @jobs_app.command("disable")
    def jobs_disable(
        job_id: Annotated[str, typer.Argument(help="Job id")],
        config: ConfigOption = None,
    ) -> None:
        """Disable a job. A run already in progress is not interrupted."""
        _set_enabled(job_id, False, config)
