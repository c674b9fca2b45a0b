"""Shared command helpers and utilities."""

import sys
from typing import Callable, Optional

from rich import print as rprint

from nebulaflow_toolkit.shared.exceptions import ConfigurationException
from nebulaflow_toolkit.shared.results import ErrorSeverity, Result


def handle_command_error(
    error: Exception, show_usage_fn: Optional[Callable[[], None]] = None
) -> None:
    """
    Standard error handling for commands.

    Args:
        error: The exception that occurred
        show_usage_fn: Optional function to display usage instructions
    """
    if isinstance(error, (ValueError, ConfigurationException)):
        rprint(f"[red]Error:[/red] {str(error)}")
    else:
        rprint(f"[red]Unexpected error:[/red] {str(error)}")

    if show_usage_fn:
        show_usage_fn()

    sys.exit(1)


def print_result_errors(result: Result) -> None:
    """Print the warnings and errors a Result carries, one per line."""
    colors = {
        ErrorSeverity.WARNING: "yellow",
        ErrorSeverity.ERROR: "red",
        ErrorSeverity.CRITICAL: "bold red",
    }
    for error in result.errors:
        color = colors[error.severity]
        rprint(
            f"[{color}]{error.severity.value.upper()}[/{color}]"
            f" {error.source}: {error.message}"
        )
