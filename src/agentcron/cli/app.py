"""Main CLI application."""

from typing import Annotated

import typer

from agentcron.cli.commands import config, jobs

app = typer.Typer(
    name="agentcron",
    help="agentcron - scheduled jobs for an agent",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Manage scheduled agent jobs."""
    from agentcron.logging import configure_logging

    ctx.obj = {"verbose": verbose}
    configure_logging(level="DEBUG" if verbose else None)


@app.command()
def version() -> None:
    """Show agentcron version."""
    from agentcron import __version__
    from agentcron.cli.console import console

    console.print(f"agentcron {__version__}")


config.register(app)
jobs.register(app)


if __name__ == "__main__":
    app()
