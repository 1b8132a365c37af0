"""
Workspace maintenance commands
"""

from typing import Optional

import click
from rich.console import Console

from ...core.workspace_manager import WorkspaceManager
from ..utils.async_runner import async_command
from ..utils.context import load_cli_config


@click.group()
def workspace() -> None:
    """
    Maintain the ephemeral analysis workspaces.
    """
    pass


@workspace.command()
@click.option(
    "--max-age-hours",
    type=click.FloatRange(min=0),
    help="Delete workspaces older than this (defaults to workspace.stale_after_hours)",
)
@click.pass_context
@async_command
async def sweep(ctx: click.Context, max_age_hours: Optional[float]) -> None:
    """Reclaim workspaces orphaned by crashed or interrupted runs."""
    console: Console = ctx.obj["console"]
    config = await load_cli_config(ctx)

    age = config.workspace.stale_after_hours if max_age_hours is None else max_age_hours
    manager = WorkspaceManager.from_config(config.workspace)
    removed = await manager.sweep(age)

    console.print(
        f"[green]Removed {removed} workspaces older than {age:g}h "
        f"from {manager.root_dir}[/green]"
    )
