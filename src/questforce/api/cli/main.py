"""Questforce CLI entry point."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from questforce.api.cli.commands import run, tasks, tools
from questforce.infrastructure.logging_config import configure_logging

app = typer.Typer(
    name="questforce",
    help="Questforce - tool-calling agent for question bank management",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("run", help="Execute a task and print the result")(run.run_task)
app.command("stream", help="Execute a task and print events as they happen")(run.stream_task)
app.command("worker", help="Run the background worker until interrupted")(tasks.run_worker)
app.add_typer(tasks.app, name="tasks", help="Background task management")
app.add_typer(tools.app, name="tools", help="Tool catalog")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML configuration file"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Questforce Agent CLI."""
    configure_logging("DEBUG" if debug else "WARNING")
    ctx.obj = {"config": config, "debug": debug}


@app.command()
def version():
    """Show Questforce version."""
    from questforce import __version__

    console.print(f"[bold blue]Questforce[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
