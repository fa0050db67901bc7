"""Adaptive retry for contract validation.

This module provides:
- Repair prompt building for the next producer request
- A retry controller with exponential backoff and cancellation
"""

from .context import build_repair_context
from .controller import AdaptiveRetryController, AttemptRecord, RetrySession, RetryState

__all__ = [
    "build_repair_context",
    "AdaptiveRetryController",
    "AttemptRecord",
    "RetrySession",
    "RetryState",
]
