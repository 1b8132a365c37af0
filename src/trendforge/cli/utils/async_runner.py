"""
Async execution utilities for CLI commands
"""

import asyncio
import logging
import sys
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from rich.console import Console

from ..ui.display import create_error_display

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

logger = logging.getLogger(__name__)


def async_command(f: F) -> Callable[..., Any]:
    """
    Run an async click command under asyncio.run.

    Interrupts exit with 130. Any other escaping error is logged and rendered
    as an error panel naming the command, then exits with 1.
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return asyncio.run(f(*args, **kwargs))  # type: ignore
        except KeyboardInterrupt:
            Console().print("\n[yellow]Operation interrupted by user[/yellow]")
            sys.exit(130)  # Standard exit code for SIGINT
        except Exception as e:
            logger.debug(f"Command {f.__name__} failed", exc_info=True)
            Console().print(create_error_display(e, context=f"Running {f.__name__}"))
            sys.exit(1)

    return wrapper
