"""
Rich display components for run reports, cache statistics and configuration
"""

from typing import Any, Dict, Optional

from rich.panel import Panel
from rich.table import Table

from ...models.pipeline_models import Provenance, RunReport

PROVENANCE_STYLES = {
    Provenance.DEEP: "green",
    Provenance.CACHE_HIT: "cyan",
    Provenance.FALLBACK: "yellow",
    Provenance.STUB: "red",
}


def create_config_table(
    config_data: Dict[str, Any], title: str = "Configuration"
) -> Table:
    """
    Create a Rich table for configuration display

    Nested sections are flattened to dotted keys.
    """
    table = Table(title=title, show_header=True, header_style="bold blue")
    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="green")

    def add_rows(prefix: str, data: Dict[str, Any]) -> None:
        for key, value in data.items():
            name = f"{prefix}.{key}" if prefix else key
            if isinstance(value, dict):
                add_rows(name, value)
            else:
                table.add_row(name, "not set" if value is None else str(value))

    add_rows("", config_data)
    return table


def create_report_table(report: RunReport) -> Table:
    """One row per item with its provenance and errors."""
    table = Table(title="Run Report", show_header=True, header_style="bold blue")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Item", style="cyan")
    table.add_column("Provenance")
    table.add_column("Files", justify="right")
    table.add_column("Errors", style="red")

    for index, result in enumerate(report.results, start=1):
        style = PROVENANCE_STYLES.get(result.provenance, "white")
        errors = report.errors.get(result.identity, [])
        table.add_row(
            str(index),
            result.identity,
            f"[{style}]{result.provenance.value}[/{style}]",
            str(result.files_analyzed),
            errors[-1] if errors else "",
        )

    return table


def create_run_summary_panel(report: RunReport) -> Panel:
    counts = report.provenance_counts()
    lines = [
        f"Items: {report.total_items}",
        f"Deep: {counts['deep']}  Cached: {counts['cache_hit']}  "
        f"Fallback: {counts['fallback']}  Stub: {counts['stub']}",
        f"Snapshot saved: {_yes_no(report.snapshot_saved)}",
        f"Sink dispatched: {_yes_no(report.sink_dispatched)}"
        + (f" ({report.sink_url})" if report.sink_url else ""),
        f"Notifications dispatched: {_yes_no(report.notifications_dispatched)}",
        f"Workspaces swept: {report.workspaces_swept}",
    ]
    if report.duration_seconds is not None:
        lines.append(f"Duration: {format_duration(report.duration_seconds)}")
    for stage, message in report.stage_errors.items():
        lines.append(f"[red]{stage} failed: {message}[/red]")
    if report.trends and report.trends.summary:
        lines.append("")
        lines.append(f"Trends: {report.trends.summary}")

    border = "green" if report.fully_successful and not report.stage_errors else "yellow"
    return Panel("\n".join(lines), title="Run Summary", border_style=border)


def create_cache_stats_display(stats: Dict[str, Any]) -> Panel:
    """
    Create cache statistics display panel
    """
    stats_text = [
        f"Entries: {stats.get('size', 0)} / {stats.get('max_size', 0)}",
        f"Hits: {stats.get('hits', 0)}",
        f"Misses: {stats.get('misses', 0)}",
        f"Hit rate: {stats.get('hit_rate', 0.0):.1f}%",
        f"Sets: {stats.get('sets', 0)}",
        f"Deletes: {stats.get('deletes', 0)}",
        f"Evictions: {stats.get('evictions', 0)}",
    ]
    if stats.get("cache_dir"):
        stats_text.append(f"Directory: {stats['cache_dir']}")

    return Panel("\n".join(stats_text), title="Cache Statistics", border_style="cyan")


def create_error_display(error: Exception, context: Optional[str] = None) -> Panel:
    """
    Create formatted error display with suggestions
    """
    error_lines = []

    if context:
        error_lines.append(f"Context: {context}")
        error_lines.append("")

    error_lines.append(f"Error: {str(error)}")
    error_lines.append("")

    error_type = type(error).__name__.lower()
    if "collection" in error_type:
        suggestions = [
            "Check connectivity to the item source",
            "Run with --verbose to see each retry attempt",
        ]
    elif "config" in error_type:
        suggestions = [
            "Check configuration file: trendforge config show",
            "Regenerate defaults: trendforge config init --force",
        ]
    else:
        suggestions = ["Run with --verbose for detailed error information"]

    error_lines.append("Suggestions:")
    for suggestion in suggestions:
        error_lines.append(f"  • {suggestion}")

    return Panel(
        "\n".join(error_lines),
        title="[red]Error[/red]",
        border_style="red",
        padding=(1, 2),
    )


def format_duration(seconds: float) -> str:
    """Format duration in a human-readable way"""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.0f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def _yes_no(value: bool) -> str:
    return "[green]yes[/green]" if value else "[yellow]no[/yellow]"
