"""
Main CLI entry point for trendforge
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install

# Install rich traceback handler for better error display
install(show_locals=False)

# Initialize console
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)


@click.group()
@click.version_option(version="1.0.0", prog_name="trendforge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="TRENDFORGE_CONFIG_PATH",
    help="Configuration file (defaults to ~/.trendforge/config.yaml)",
)
@click.pass_context
def cli(
    ctx: click.Context, verbose: bool, no_color: bool, config_path: Optional[Path]
) -> None:
    """
    trendforge - Trend analysis pipeline

    Collects trending items, analyzes each under bounded concurrency with
    graceful degradation, and reports trends against the previous run.

    Examples:
      trendforge run --factory mysite.pipeline:build   # Run the pipeline once
      trendforge cache stats                          # Inspect the result cache
      trendforge workspace sweep --max-age-hours 2    # Reclaim orphaned workspaces
      trendforge config init                          # Write default configuration
    """
    ctx.ensure_object(dict)

    # Configure console
    if no_color:
        ctx.obj["console"] = Console(force_terminal=False, no_color=True)
    else:
        ctx.obj["console"] = console

    # Configure logging level
    if verbose:
        logging.getLogger().setLevel(logging.INFO)
        logging.getLogger("trendforge").setLevel(logging.DEBUG)
    ctx.obj["verbose"] = verbose

    # Store global options
    ctx.obj["no_color"] = no_color
    ctx.obj["config_path"] = config_path


# Import and register commands at module level to support testing
from .commands import cache, config, run, workspace  # noqa: E402

cli.add_command(run.run)
cli.add_command(cache.cache)
cli.add_command(workspace.workspace)
cli.add_command(config.config)


def main() -> None:
    """Main entry point for the CLI application"""
    try:
        cli()

    except KeyboardInterrupt:
        console.print("\n[yellow]Operation interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error: {e}[/red]")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
