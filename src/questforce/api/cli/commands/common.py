"""Helpers shared by CLI commands."""

import typer

from questforce.application.factory import AgentFactory


def build_factory(ctx: typer.Context) -> AgentFactory:
    """Create an AgentFactory from the global ``--config`` option."""
    config_path = (ctx.obj or {}).get("config")
    if config_path is not None:
        return AgentFactory.from_file(config_path)
    return AgentFactory()
