"""Errors raised by contract validation."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..recovery.classifier import FailureCategory


class ContractConfigError(ValueError):
    """A contract is misconfigured (no schema, unknown type).

    Not an artifact problem, so it is never retried.
    """


class ValidationError(Exception):
    """An artifact failed its contract.

    Attributes:
        contract_type: Contract that failed (e.g. "json_schema").
        message: One-line summary.
        details: Ordered detail lines (file, recovery fixes, schema issues).
        retryable: Whether re-running the producer can fix it.
        attempt: Attempt number when raised from a retry loop.
        max_attempts: Attempt budget when raised from a retry loop.
        category: Explicit failure category set by the producer of the error.
            When present the classifier uses it instead of keyword matching.
    """

    def __init__(
        self,
        contract_type: str,
        message: str,
        details: list[str] | None = None,
        retryable: bool = True,
        attempt: int = 0,
        max_attempts: int = 0,
        category: FailureCategory | None = None,
    ):
        self.contract_type = contract_type
        self.message = message
        self.details = list(details or [])
        self.retryable = retryable
        self.attempt = attempt
        self.max_attempts = max_attempts
        self.category = category
        super().__init__(self.__str__())

    def __str__(self) -> str:
        text = f"contract validation failed [{self.contract_type}]"
        if self.max_attempts > 0:
            text += f" (attempt {self.attempt}/{self.max_attempts})"
        text += f": {self.message}"
        if self.details:
            text += "\n  Details:"
            for detail in self.details:
                text += f"\n    - {detail}"
        return text


class RollbackError(Exception):
    """The rollback log for a pipeline could not be read."""
