"""
Logging configuration for CLI runs
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from ...models.config_models import LoggingConfig

_FILE_HANDLER_NAME = "trendforge-file"


def configure_logging(config: LoggingConfig, verbose: bool = False) -> Optional[Path]:
    """
    Apply the configured log level and optional rotating log file.

    The console RichHandler installed by the CLI entry point is kept; a file
    handler is added (or replaced) when `config.file_path` is set.

    Returns:
        Path of the log file, if one is configured
    """
    root = logging.getLogger()
    package_logger = logging.getLogger("trendforge")

    if verbose:
        root.setLevel(logging.INFO)
        package_logger.setLevel(logging.DEBUG)
    else:
        package_logger.setLevel(getattr(logging, config.level, logging.INFO))

    for handler in list(root.handlers):
        if handler.get_name() == _FILE_HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()

    if not config.file_path:
        return None

    log_path = Path(config.file_path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=config.max_file_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    file_handler.set_name(_FILE_HANDLER_NAME)
    file_handler.setFormatter(logging.Formatter(config.format))
    root.addHandler(file_handler)
    return log_path
