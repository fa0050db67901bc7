"""Error handling utilities for the artguard CLI.

Provides consistent error formatting with:
- Human-friendly messages
- Suggested fixes
- Hidden stack traces (unless debug mode)
"""

from __future__ import annotations

import os
import sys
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError
from rich.markup import escape

from ..contract.errors import ContractConfigError, RollbackError, ValidationError

if TYPE_CHECKING:
    from rich.console import Console

# Debug mode enabled by ARTGUARD_DEBUG=1 or --debug flag
_debug_mode = os.environ.get("ARTGUARD_DEBUG", "0") == "1"


class ErrorCategory(str, Enum):
    """Categories of errors for consistent formatting."""

    CONFIG = "config"  # Configuration and contract definition errors
    FILE = "file"  # File not found, permission errors
    CONTRACT = "contract"  # Artifact failed its contract
    ROLLBACK = "rollback"  # Rollback state errors
    INTERNAL = "internal"  # Internal/unexpected errors


@dataclass
class ErrorInfo:
    """Structured error information for consistent display."""

    message: str
    category: ErrorCategory
    suggestion: str | None = None
    details: str | None = None
    original_error: Exception | None = None


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug mode for verbose error output."""
    global _debug_mode
    _debug_mode = enabled


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode


def format_error(error: ErrorInfo, console: Console) -> None:
    """Format and display an error with consistent styling.

    Args:
        error: Structured error information
        console: Rich console for output
    """
    console.print(f"[bold red]Error:[/bold red] {escape(error.message)}", highlight=False)

    # Contract details are the actionable part, always show them
    if error.details:
        if _debug_mode or error.category == ErrorCategory.CONTRACT or len(error.details) < 200:
            console.print(error.details, markup=False, style="dim")

    if error.suggestion:
        console.print()
        console.print(f"[yellow]Suggestion:[/yellow] {escape(error.suggestion)}")

    # Show stack trace in debug mode
    if _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Stack trace (debug mode):[/dim]")
        tb_lines = traceback.format_exception(
            type(error.original_error),
            error.original_error,
            error.original_error.__traceback__,
        )
        for line in tb_lines:
            console.print(line.rstrip(), markup=False, style="dim")

    # Hint about debug mode
    if not _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Set ARTGUARD_DEBUG=1 or use --debug for more details[/dim]")


def error_file_not_found(
    path: str,
    context: str = "file",
    suggestion: str | None = None,
    original: Exception | None = None,
) -> ErrorInfo:
    """Create error info for file not found errors.

    Args:
        path: Path that was not found
        context: What kind of file (e.g., "artifact", "schema")
        suggestion: Custom suggestion, or auto-generate one
        original: Original exception if available
    """
    if suggestion is None:
        if "schema" in path.lower():
            suggestion = "Check the contract's schema_path (relative paths resolve against the workspace)"
        elif "artifact" in path.lower() or ".wave" in path:
            suggestion = "Check that the step wrote its artifact, or pass --source"
        elif "config" in path.lower():
            suggestion = "Check ARTGUARD_CONFIG or ~/.artguard/config.toml"
        else:
            suggestion = "Check the path and ensure the file exists"

    return ErrorInfo(
        message=f"{context.capitalize()} not found: {path}",
        category=ErrorCategory.FILE,
        suggestion=suggestion,
        original_error=original,
    )


def error_contract_failed(error: ValidationError) -> ErrorInfo:
    """Create error info for an artifact that failed its contract.

    Args:
        error: The validation error
    """
    suggestion = "Fix the artifact and re-run validation"
    if not error.retryable:
        suggestion = "This failure is not retryable; fix the contract or the input"

    return ErrorInfo(
        message=f"Contract [{error.contract_type}] failed: {error.message}",
        category=ErrorCategory.CONTRACT,
        suggestion=suggestion,
        details="\n".join(error.details) or None,
    )


def error_config_invalid(
    key: str,
    value: str | None = None,
    problem: str | None = None,
    original: Exception | None = None,
) -> ErrorInfo:
    """Create error info for invalid configuration errors.

    Args:
        key: Configuration key that is invalid
        value: The invalid value (if known)
        problem: What is wrong with it
        original: Original exception if available
    """
    details = None
    if value is not None and problem is not None:
        details = f"Got '{value}': {problem}"
    elif problem is not None:
        details = problem

    return ErrorInfo(
        message=f"Invalid configuration: {key}",
        category=ErrorCategory.CONFIG,
        suggestion="Check the [contract], [retry] and [rollback] sections of your config",
        details=details,
        original_error=original,
    )


def error_internal(message: str, original: Exception | None = None) -> ErrorInfo:
    """Create error info for internal/unexpected errors.

    Args:
        message: Error message
        original: Original exception if available
    """
    return ErrorInfo(
        message=f"Internal error: {message}",
        category=ErrorCategory.INTERNAL,
        suggestion="This may be a bug. Re-run with --debug and include the stack trace when reporting it",
        original_error=original,
    )


def handle_exception(
    console: Console,
    exception: Exception,
    context: str = "operation",
    exit_code: int = 1,
    exit_on_error: bool = True,
) -> ErrorInfo:
    """Handle an exception and display a formatted error.

    Args:
        console: Rich console for output
        exception: The exception to handle
        context: Description of what was being done
        exit_code: Exit code to use if exit_on_error is True
        exit_on_error: Whether to exit after displaying the error

    Returns:
        ErrorInfo for the error (useful if not exiting)
    """
    error = classify_exception(exception, context)

    format_error(error, console)

    if exit_on_error:
        sys.exit(exit_code)

    return error


def classify_exception(exception: Exception, context: str = "operation") -> ErrorInfo:
    """Classify an exception into an ErrorInfo.

    Args:
        exception: The exception to classify
        context: Description of what was being done

    Returns:
        ErrorInfo with appropriate categorization
    """
    if isinstance(exception, ValidationError):
        return error_contract_failed(exception)

    if isinstance(exception, ContractConfigError):
        return ErrorInfo(
            message=f"Invalid contract: {exception}",
            category=ErrorCategory.CONFIG,
            suggestion="Provide an inline schema or a readable schema_path",
            original_error=exception,
        )

    if isinstance(exception, RollbackError):
        return ErrorInfo(
            message=f"Rollback failed: {exception}",
            category=ErrorCategory.ROLLBACK,
            suggestion="Run 'artguard rollback plan <pipeline-id>' to inspect the log",
            original_error=exception,
        )

    if isinstance(exception, PydanticValidationError):
        first = exception.errors()[0]
        key = ".".join(str(part) for part in first["loc"]) or context
        value = first.get("input")
        return error_config_invalid(
            key,
            None if value is None else str(value),
            first["msg"],
            original=exception,
        )

    if isinstance(exception, FileNotFoundError):
        path = exception.filename or str(exception)
        return error_file_not_found(str(path), context, original=exception)

    if isinstance(exception, PermissionError):
        return ErrorInfo(
            message=f"Permission denied: {exception}",
            category=ErrorCategory.FILE,
            suggestion="Check file permissions or run with appropriate access",
            original_error=exception,
        )

    error_str = str(exception).lower()
    if any(word in error_str for word in ["config", "toml", "recovery level"]):
        return ErrorInfo(
            message=f"Configuration error: {exception}",
            category=ErrorCategory.CONFIG,
            suggestion="Check the [contract], [retry] and [rollback] sections of your config",
            original_error=exception,
        )

    return error_internal(f"{context}: {exception}", exception)
