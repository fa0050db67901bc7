"""Contract validation for pipeline artifacts.

This module provides:
- Validation errors carrying category and retryability
- Error wrapper detection and payload extraction
- A JSON Schema oracle adapter

The validation orchestrator lives in ``artguard.contract.validator``.
"""

from .errors import ContractConfigError, RollbackError, ValidationError
from .schema import JsonSchemaOracle, SchemaIssue
from .wrapper import (
    ErrorWrapper,
    WrapperConfidence,
    WrapperDetectionResult,
    detect_error_wrapper,
)

__all__ = [
    # Errors
    "ContractConfigError",
    "RollbackError",
    "ValidationError",
    # Schema oracle
    "JsonSchemaOracle",
    "SchemaIssue",
    # Wrapper detection
    "ErrorWrapper",
    "WrapperConfidence",
    "WrapperDetectionResult",
    "detect_error_wrapper",
]
