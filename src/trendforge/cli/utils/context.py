"""
Shared helpers for CLI commands
"""

from pathlib import Path
from typing import Optional

import click

from ...core.config_manager import ConfigurationManager
from ...models.config_models import PipelineConfig
from .logging_setup import configure_logging


async def load_cli_config(ctx: click.Context) -> PipelineConfig:
    """Load configuration from the global --config option and apply its logging."""
    config_path: Optional[Path] = ctx.obj.get("config_path")
    config = await ConfigurationManager().load_config(config_path)
    configure_logging(config.logging, verbose=ctx.obj.get("verbose", False))
    return config
