"""
Configuration management commands
"""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel

from ...core.config_manager import ConfigurationManager
from ...models.error_models import ConfigurationError
from ..ui.display import create_config_table, create_error_display
from ..utils.async_runner import async_command
from ..utils.context import load_cli_config


@click.group()
def config() -> None:
    """
    Configuration management commands.

    Manage concurrency, retry, cache, workspace, history and logging
    settings of trendforge.
    """
    pass


@config.command()
@click.pass_context
@async_command
async def show(ctx: click.Context) -> None:
    """
    Display the effective configuration.

    Values come from defaults, the configuration file and TRENDFORGE_*
    environment variables, later sources taking precedence.
    """
    console: Console = ctx.obj["console"]
    pipeline_config = await load_cli_config(ctx)
    console.print(create_config_table(pipeline_config.model_dump()))


@config.command()
@click.option("--force", is_flag=True, help="Overwrite an existing configuration file")
@click.option(
    "--path",
    "target_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Where to write the file (defaults to --config or ~/.trendforge/config.yaml)",
)
@click.pass_context
@async_command
async def init(ctx: click.Context, force: bool, target_path: Optional[Path]) -> None:
    """Write a commented default configuration file."""
    console: Console = ctx.obj["console"]
    config_manager = ConfigurationManager()

    try:
        written = await config_manager.generate_default_config(
            target_path or ctx.obj.get("config_path"), force=force
        )
    except ConfigurationError as e:
        console.print(create_error_display(e, context="Generating configuration"))
        sys.exit(1)

    console.print(
        Panel(
            f"Configuration written to {written}\n\n"
            "Edit the file to customize settings, then check it with:\n"
            "  trendforge config show",
            title="[green]Configuration created[/green]",
            border_style="green",
        )
    )
