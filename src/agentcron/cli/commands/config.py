"""Configuration commands."""

from pathlib import Path
from typing import Annotated

import click
import typer

from agentcron.cli.console import console, create_table, error, success


def register(app: typer.Typer) -> None:
    """Register the config command."""

    @app.command()
    def config(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: show, validate, paths"),
        ] = None,
        path: Annotated[
            Path | None,
            typer.Option(
                "--path",
                "-p",
                help="Path to config file (default: search agentcron.toml, $AGENTCRON_HOME/config.toml)",
            ),
        ] = None,
    ) -> None:
        """Inspect configuration."""
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from agentcron.config import ConfigError, load_config

        if action == "paths":
            from agentcron.config.paths import get_all_paths

            table = create_table("Paths", [("Name", "cyan"), ("Path", "")])
            for name, value in get_all_paths().items():
                table.add_row(name, str(value))
            console.print(table)
            return

        if action not in ("show", "validate"):
            error(f"Unknown action: {action}")
            console.print("Valid actions: show, validate, paths")
            raise typer.Exit(1)

        try:
            config_obj = load_config(path.expanduser() if path else None)
        except FileNotFoundError as e:
            error(str(e))
            raise typer.Exit(1) from None
        except ConfigError as e:
            error(f"Configuration validation failed: {e}")
            raise typer.Exit(1) from None

        if action == "validate":
            success("Configuration is valid")
            return

        table = create_table("Configuration", [("Setting", "cyan"), ("Value", "green")])
        table.add_row("Store", str(config_obj.store_path))
        table.add_row("Timezone", config_obj.timezone)
        table.add_row("Poll interval", f"{config_obj.scheduler.poll_interval}s")
        timeout = config_obj.scheduler.execution_timeout
        table.add_row("Execution timeout", f"{timeout}s" if timeout else "none")
        table.add_row("Log level", config_obj.logging.level or "(env / INFO)")
        table.add_row("Log to file", str(config_obj.logging.log_to_file))
        console.print(table)
