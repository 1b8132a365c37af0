"""
Pipeline run command
"""

import sys
from typing import Optional

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn

from ...core.pipeline_orchestrator import PipelineOrchestrator
from ...core.snapshot_store import JsonSnapshotStore
from ...integration.collaborators import PipelineCollaborators, load_factory
from ...models.error_models import CollectionError, ConfigurationError
from ..ui.display import create_error_display, create_report_table, create_run_summary_panel
from ..utils.async_runner import async_command
from ..utils.context import load_cli_config


@click.command()
@click.option(
    "--factory",
    "-f",
    required=True,
    help="Collaborator factory as 'module:callable'",
)
@click.option(
    "--max-concurrency",
    type=click.IntRange(1, 50),
    help="Override the configured worker pool size",
)
@click.option("--no-progress", is_flag=True, help="Do not show a progress bar")
@click.pass_context
@async_command
async def run(
    ctx: click.Context,
    factory: str,
    max_concurrency: Optional[int],
    no_progress: bool,
) -> None:
    """
    Run the pipeline once.

    FACTORY names a callable that receives the loaded configuration and
    returns the PipelineCollaborators (source, analysis, sink, notifications).

    Examples:
      trendforge run --factory mysite.pipeline:build
      trendforge --config ./trendforge.yaml run -f mysite.pipeline:build
    """
    console: Console = ctx.obj["console"]
    config = await load_cli_config(ctx)
    if max_concurrency:
        config.concurrency.max_concurrency = max_concurrency

    try:
        collaborators = load_factory(factory)(config)
    except ConfigurationError as e:
        console.print(create_error_display(e, context="Loading collaborator factory"))
        sys.exit(2)

    if not isinstance(collaborators, PipelineCollaborators):
        console.print(f"[red]Factory {factory} did not return PipelineCollaborators[/red]")
        sys.exit(2)

    collaborators = collaborators.with_snapshot_store(
        JsonSnapshotStore(config.history.path, config.history.retention_days)
    )

    with Progress(
        TextColumn("[bold blue]Analyzing"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        disable=no_progress,
        transient=True,
    ) as progress:
        task_id = progress.add_task("items", total=None)

        def on_progress(completed: int, total: int) -> None:
            progress.update(task_id, completed=completed, total=total)

        orchestrator = PipelineOrchestrator(
            collaborators, config=config, on_progress=on_progress
        )
        try:
            report = await orchestrator.run_pipeline()
        except CollectionError as e:
            progress.stop()
            console.print(create_error_display(e, context="Source collection"))
            sys.exit(1)

    if report.results:
        console.print(create_report_table(report))
    console.print(create_run_summary_panel(report))
