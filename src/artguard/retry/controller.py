"""Adaptive retry controller for contract validation.

Re-runs an external validate function until it passes, the failure is
classified as non-retryable, the attempt budget runs out, or the caller
cancels. Between attempts it renders a repair prompt for the producer and
backs off exponentially with jitter.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..recovery.classifier import FailureCategory, FailureClassification, classify_failure
from .context import build_repair_context

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_BACKOFF_FACTOR = 2.0
JITTER_RATIO = 0.25


class RetryState(str, Enum):
    """State of a retry session."""

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RetryState.SUCCESS, RetryState.EXHAUSTED, RetryState.CANCELLED)


@dataclass
class AttemptRecord:
    """One failed attempt within a session."""

    attempt: int
    classification: FailureClassification | None
    error: str
    delay: float = 0.0
    repair_prompt: str = ""

    @property
    def category(self) -> FailureCategory:
        if self.classification is None:
            return FailureCategory.UNKNOWN
        return self.classification.category


@dataclass
class RetrySession:
    """Outcome of a retry run."""

    max_attempts: int
    attempts: int = 0
    history: list[AttemptRecord] = field(default_factory=list)
    duration: float = 0.0
    state: RetryState = RetryState.PENDING
    final_error: BaseException | None = None
    result: Any = None

    @property
    def success(self) -> bool:
        return self.state == RetryState.SUCCESS

    @property
    def failure_categories(self) -> list[FailureCategory]:
        return [record.category for record in self.history]

    @property
    def last_repair_prompt(self) -> str:
        for record in reversed(self.history):
            if record.repair_prompt:
                return record.repair_prompt
        return ""

    def format_summary(self) -> str:
        """Human-readable summary of the session."""
        if self.success:
            if self.attempts == 1:
                return "✓ Passed validation on first attempt"
            return f"✓ Passed validation after {self.attempts} attempts"

        if self.state == RetryState.CANCELLED:
            lines = [f"✗ Cancelled after {self.attempts} attempts"]
        else:
            lines = [f"✗ Failed after {self.attempts} attempts"]

        if self.history:
            lines.append("")
            lines.append("Failure progression:")
            for record in self.history:
                lines.append(f"  Attempt {record.attempt}: {record.category.value}")

        if self.final_error is not None:
            lines.append("")
            lines.append(f"Final error: {self.final_error}")

        return "\n".join(lines)


class AdaptiveRetryController:
    """Retries validation with classification-aware decisions.

    One controller may be shared across threads; each ``run`` keeps its own
    session. Sleep and the jitter source are injectable so callers (and
    tests) control wall-clock cost.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        """Initialize the controller.

        Args:
            max_attempts: Default attempt budget for ``run``.
            base_delay: Delay before exponential growth, in seconds.
            max_delay: Upper bound on the un-jittered delay.
            backoff_factor: Multiplier per attempt.
            sleep: Blocking sleep function.
            rng: Random source for jitter.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self._sleep = sleep
        self._rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        """Backoff before the attempt after ``attempt``, jittered +/-25%."""
        delay = min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)
        jitter = delay * JITTER_RATIO
        return delay - jitter + jitter * 2.0 * self._rng.random()

    def should_retry(self, attempt: int, error: BaseException | str | None) -> bool:
        """Whether another attempt should follow a failed ``attempt``."""
        if attempt >= self.max_attempts:
            return False
        classification = classify_failure(error)
        return classification is not None and classification.retryable

    def generate_repair_prompt(self, error: BaseException | str | None, attempt: int) -> str:
        """Render corrective instructions for the next producer request.

        Returns an empty string when there is no error.
        """
        classification = classify_failure(error)
        if classification is None:
            return ""
        return build_repair_context(classification, attempt, self.max_attempts)

    def run(
        self,
        validate_fn: Callable[[], Any],
        max_attempts: int | None = None,
        cancel_event: threading.Event | None = None,
        on_retry: Callable[[AttemptRecord], None] | None = None,
    ) -> RetrySession:
        """Run ``validate_fn`` until it passes or retrying stops.

        ``validate_fn`` signals failure by raising. Its return value on
        success is kept as ``RetrySession.result``.

        Args:
            validate_fn: Zero-argument validation callable.
            max_attempts: Override the controller's attempt budget.
            cancel_event: Checked before every backoff sleep and before
                every retry; once set, the session ends as cancelled.
            on_retry: Called with each failed attempt that will be retried,
                after its repair prompt is built and before sleeping.

        Returns:
            RetrySession in a terminal state.
        """
        limit = max_attempts if max_attempts is not None else self.max_attempts
        if limit < 1:
            raise ValueError("max_attempts must be at least 1")

        session = RetrySession(max_attempts=limit)
        started = time.monotonic()

        try:
            for attempt in range(1, limit + 1):
                if attempt > 1 and cancel_event is not None and cancel_event.is_set():
                    session.state = RetryState.CANCELLED
                    break

                session.attempts = attempt
                try:
                    session.result = validate_fn()
                except Exception as e:
                    classification = classify_failure(e)
                    record = AttemptRecord(attempt=attempt, classification=classification, error=str(e))
                    session.history.append(record)
                    session.final_error = e

                    if classification is None or not classification.retryable:
                        logger.warning(
                            "Validation failure is not retryable (%s), stopping after attempt %d",
                            record.category.value,
                            attempt,
                        )
                        session.state = RetryState.EXHAUSTED
                        break

                    if attempt >= limit:
                        logger.warning("Validation retries exhausted after %d attempts", attempt)
                        session.state = RetryState.EXHAUSTED
                        break

                    session.state = RetryState.RETRYING
                    record.repair_prompt = build_repair_context(classification, attempt, limit)
                    record.delay = self.delay(attempt)
                    if on_retry is not None:
                        on_retry(record)

                    if cancel_event is not None and cancel_event.is_set():
                        session.state = RetryState.CANCELLED
                        break

                    logger.info(
                        "Attempt %d/%d failed (%s), retrying in %.2fs",
                        attempt,
                        limit,
                        record.category.value,
                        record.delay,
                    )
                    self._sleep(record.delay)
                    continue

                session.state = RetryState.SUCCESS
                session.final_error = None
                break
        finally:
            session.duration = time.monotonic() - started

        return session
