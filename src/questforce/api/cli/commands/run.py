"""Run commands - Execute agent tasks in the foreground."""

import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from questforce.api.cli.commands.common import build_factory
from questforce.core.domain.events import ProgressStage, StreamEventType

console = Console()


def run_task(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task description"),
    user: str = typer.Option("local", "--user", "-u", help="User the task runs for"),
):
    """Execute a task and wait for the result.

    Examples:
        questforce run "Create 3 questions about Python closures"
    """
    executor = build_factory(ctx).create_executor()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("[>] Working...", total=None)
        result = asyncio.run(executor.execute_task(task, user))

    if result.success:
        console.print(Panel(result.result or "(no output)", title="Agent", border_style="green"))
    else:
        console.print(f"[red]Task {result.outcome.value}:[/red] {result.error}")

    usage = result.metadata.token_usage
    console.print(
        f"[dim]outcome={result.outcome.value} iterations={result.metadata.iterations} "
        f"tools={result.metadata.tools_used} tokens={usage.total} "
        f"duration={result.metadata.duration_ms}ms[/dim]"
    )
    if not result.success:
        raise typer.Exit(1)


def stream_task(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task description"),
    user: str = typer.Option("local", "--user", "-u", help="User the task runs for"),
    conversation: Optional[str] = typer.Option(
        None, "--conversation", help="Continue an existing conversation"
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Print each event as one JSON object per line"
    ),
):
    """Execute a task inside a conversation and print its events."""
    service = build_factory(ctx).create_agent_service()

    async def _stream() -> bool:
        success = False
        async for event in service.execute_task_streaming(task, user, conversation):
            if as_json:
                typer.echo(json.dumps(event.to_dict()))
                success = event.type == StreamEventType.COMPLETED
            elif event.type == StreamEventType.STARTED:
                console.print(f"[bold blue]>[/bold blue] {event.message}")
            elif event.type == StreamEventType.PROGRESS:
                if event.stage == ProgressStage.ITERATION:
                    console.print(f"[dim]{event.message}[/dim]")
                elif event.stage == ProgressStage.TOOL_INVOKED:
                    console.print(f"  [cyan]tool[/cyan] {event.tool_name} {event.input or {}}")
                else:
                    console.print(f"  [dim]{event.message}: {event.output}[/dim]")
            elif event.type == StreamEventType.COMPLETED:
                console.print(Panel(event.content or "(no output)", title="Agent", border_style="green"))
                success = True
            else:
                console.print(f"[red]Error:[/red] {event.message}")
        return success

    if not asyncio.run(_stream()):
        raise typer.Exit(1)
