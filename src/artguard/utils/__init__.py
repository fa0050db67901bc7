"""artguard utility modules."""

from .capabilities import ToolCapabilities, get_capabilities, reset_capabilities
from .errors import (
    ErrorCategory,
    ErrorInfo,
    classify_exception,
    error_config_invalid,
    error_contract_failed,
    error_file_not_found,
    error_internal,
    format_error,
    handle_exception,
    is_debug_mode,
    set_debug_mode,
)

__all__ = [
    # Error handling
    "ErrorCategory",
    "ErrorInfo",
    "format_error",
    "handle_exception",
    "classify_exception",
    "error_file_not_found",
    "error_contract_failed",
    "error_config_invalid",
    "error_internal",
    "set_debug_mode",
    "is_debug_mode",
    # Tool capabilities
    "ToolCapabilities",
    "get_capabilities",
    "reset_capabilities",
]
