"""
Result cache inspection commands
"""

import click
from rich.console import Console

from ...core.result_cache import ResultCache
from ...models.config_models import PipelineConfig
from ..ui.display import create_cache_stats_display
from ..utils.async_runner import async_command
from ..utils.context import load_cli_config


def _open_cache(config: PipelineConfig) -> ResultCache:
    return ResultCache(
        ttl_seconds=config.cache.ttl_seconds,
        max_size=config.cache.max_size,
        persist=True,
        cache_dir=config.cache.cache_dir,
    )


@click.group()
def cache() -> None:
    """
    Inspect and clear the persisted analysis cache.
    """
    pass


@cache.command()
@click.pass_context
@async_command
async def stats(ctx: click.Context) -> None:
    """Show statistics of the persisted cache."""
    console: Console = ctx.obj["console"]
    config = await load_cli_config(ctx)

    if not config.cache.persist:
        console.print("[yellow]Cache persistence is disabled; nothing is kept between runs[/yellow]")

    result_cache = _open_cache(config)
    console.print(create_cache_stats_display(result_cache.get_stats()))


@cache.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@async_command
async def clear(ctx: click.Context, yes: bool) -> None:
    """Delete every cached analysis result."""
    console: Console = ctx.obj["console"]
    config = await load_cli_config(ctx)

    if not yes and not click.confirm(f"Clear all cached results in {config.cache.cache_dir}?"):
        console.print("[yellow]Aborted[/yellow]")
        return

    removed = _open_cache(config).clear()
    console.print(f"[green]Cleared {removed} cached results[/green]")
