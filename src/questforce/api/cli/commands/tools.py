"""Tools command - List and inspect available tools."""

import typer
from rich.console import Console
from rich.table import Table

from questforce.api.cli.commands.common import build_factory

app = typer.Typer(help="Tool catalog")
console = Console()


@app.command("list")
def list_tools(ctx: typer.Context):
    """List available tools."""
    registry = build_factory(ctx).create_tool_registry()

    table = Table(title="Available Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Description", style="white")

    for tool in registry.get_all_tools():
        table.add_row(tool.name, tool.description)

    console.print(table)


@app.command("inspect")
def inspect_tool(
    ctx: typer.Context,
    tool_name: str = typer.Argument(..., help="Tool name to inspect"),
):
    """Inspect tool details and parameters."""
    tool = build_factory(ctx).create_tool_registry().get_tool(tool_name)

    if not tool:
        console.print(f"[red]Tool '{tool_name}' not found[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold cyan]{tool.name}[/bold cyan]")
    console.print(f"{tool.description}\n")

    console.print("[bold]Parameters:[/bold]")
    console.print_json(data=tool.input_schema)
