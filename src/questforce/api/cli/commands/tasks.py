"""Task commands - Submit and inspect background tasks."""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from questforce.api.cli.commands.common import build_factory
from questforce.core.domain.errors import TaskNotFoundError
from questforce.core.domain.models import AgentTask

app = typer.Typer(help="Background task management")
console = Console()

_STATUS_STYLE = {
    "queued": "yellow",
    "processing": "blue",
    "completed": "green",
    "failed": "red",
}


def _print_task(task: AgentTask) -> None:
    style = _STATUS_STYLE.get(task.status.value, "white")
    console.print(f"[bold]Task[/bold] {task.task_id}")
    console.print(f"  status: [{style}]{task.status.value}[/{style}] (attempts: {task.attempts})")
    if task.conversation_id:
        console.print(f"  conversation: {task.conversation_id}")
    if task.result:
        console.print(f"  result: {task.result}")
    if task.error:
        console.print(f"  error: [red]{task.error}[/red]")


@app.command("submit")
def submit_task(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task description"),
    user: str = typer.Option("local", "--user", "-u"),
    conversation: Optional[str] = typer.Option(None, "--conversation"),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Process the task in this process before exiting"
    ),
):
    """Queue a task for background processing."""
    stack = build_factory(ctx).create_background_stack()

    async def _submit() -> str:
        task_id = await stack.queue.queue_task(task, user, conversation)
        if wait:
            await stack.worker.start()
            try:
                await stack.worker.join()
            finally:
                await stack.worker.stop()
        return task_id

    task_id = asyncio.run(_submit())
    console.print(f"[green]Queued[/green] task {task_id}")
    if wait:
        _print_task(asyncio.run(stack.queue.get_task(task_id, user)))


@app.command("status")
def task_status(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task id"),
    user: str = typer.Option("local", "--user", "-u"),
):
    """Show the status of a task."""
    stack = build_factory(ctx).create_background_stack()
    try:
        task = asyncio.run(stack.queue.get_task(task_id, user))
    except TaskNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    _print_task(task)


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    user: str = typer.Option("local", "--user", "-u"),
    limit: int = typer.Option(20, "--limit", "-n"),
):
    """List recent tasks of a user."""
    stack = build_factory(ctx).create_background_stack()
    tasks = asyncio.run(stack.queue.list_tasks(user, limit))

    table = Table(title=f"Tasks for {user}")
    table.add_column("Task", style="cyan")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Description", style="white")

    for task in tasks:
        style = _STATUS_STYLE.get(task.status.value, "white")
        table.add_row(
            task.task_id,
            f"[{style}]{task.status.value}[/{style}]",
            str(task.attempts),
            task.description[:60],
        )

    console.print(table)


def run_worker(ctx: typer.Context):
    """Run the background worker until interrupted."""
    stack = build_factory(ctx).create_background_stack()

    async def _run() -> None:
        await stack.worker.start()
        console.print(
            f"[green]Worker running[/green] ({stack.worker.worker_count} coroutine(s)). "
            "Press Ctrl+C to stop."
        )
        try:
            await asyncio.Event().wait()
        finally:
            await stack.worker.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[yellow]Worker stopped[/yellow]")
