"""Progressive JSON recovery for AI-produced artifacts.

Agents wrap JSON in prose and markdown, leave trailing commas, forget to
quote keys, or stop before the last closing brace. Recovery runs an ordered,
level-gated chain of rewrites (see ``strategies``) and stops at the first
rewrite whose output decodes.

Example:
    from artguard.recovery import RecoveryLevel, recover

    result = recover('{"name": "test", "value": 42,}', RecoveryLevel.CONSERVATIVE)
    result.is_valid        # True
    result.recovered_text  # '{"name":"test","value":42}'
    result.applied_fixes   # ('removed_trailing_commas',)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from .strategies import STRATEGIES, RecoveryLevel, RecoveryStrategy, decode

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = len(STRATEGIES)


@dataclass(frozen=True)
class RecoveryResult:
    """Outcome of a recovery call. Immutable once returned."""

    original_input: str
    recovered_text: str
    is_valid: bool
    applied_fixes: tuple[str, ...]
    warnings: tuple[str, ...]
    level: RecoveryLevel
    parsed_value: Any = None

    @property
    def was_modified(self) -> bool:
        return self.recovered_text != self.original_input

    def format_report(self) -> str:
        """Render a human-readable report of what recovery tried."""
        lines = ["=== JSON Recovery Report ===", ""]
        if self.is_valid:
            lines.append("✓ Successfully recovered valid JSON")
        else:
            lines.append("✗ Failed to recover valid JSON")

        lines.append(f"Recovery Level: {self.level.name.lower()}")
        lines.append(f"Applied Fixes: {len(self.applied_fixes)}")
        lines.append(f"Warnings: {len(self.warnings)}")

        if self.applied_fixes:
            lines.append("")
            lines.append("Fixes Applied:")
            lines.extend(f"  {i}. {fix}" for i, fix in enumerate(self.applied_fixes, 1))

        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            lines.extend(f"  {i}. {warning}" for i, warning in enumerate(self.warnings, 1))

        if self.was_modified:
            lines.append("")
            lines.append("Original vs Recovered:")
            lines.append(f"Original Length: {len(self.original_input)} chars")
            lines.append(f"Recovered Length: {len(self.recovered_text)} chars")
            position = _first_difference(self.original_input, self.recovered_text)
            if position is not None:
                start = max(0, position - 20)
                lines.append(f"First difference at position {position}:")
                lines.append(f"Original: ...{self.original_input[start : position + 20]}...")
                lines.append(f"Recovered: ...{self.recovered_text[start : position + 20]}...")

        return "\n".join(lines)


def _first_difference(a: str, b: str) -> int | None:
    for i, (x, y) in enumerate(zip(a, b)):
        if x != y:
            return i
    if len(a) != len(b):
        return min(len(a), len(b))
    return None


def canonical_json(value: Any) -> str:
    """Compact encoding used for recovered output."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class JsonRecoveryParser:
    """Runs the recovery chain for one level.

    Stateless between calls, so one parser can be shared across threads.
    """

    def __init__(
        self,
        level: RecoveryLevel | str = RecoveryLevel.PROGRESSIVE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        preserve_original_on_failure: bool = True,
        strategies: list[RecoveryStrategy] | None = None,
    ):
        """Initialize the parser.

        Args:
            level: Highest recovery level allowed.
            max_attempts: Maximum number of strategies to run.
            preserve_original_on_failure: Return the untouched input when
                recovery fails (otherwise the partially rewritten text).
            strategies: Override the strategy chain (filtered by level).
        """
        self.level = RecoveryLevel.parse(level)
        self.max_attempts = max_attempts
        self.preserve_original_on_failure = preserve_original_on_failure
        chain = strategies if strategies is not None else STRATEGIES
        self.strategies = [s for s in chain if s.level <= self.level]

    def recover(self, text: str) -> RecoveryResult:
        """Recover a decodable JSON document from text. Never raises."""
        ok, value = decode(text)
        if ok:
            return RecoveryResult(
                original_input=text,
                recovered_text=text,
                is_valid=True,
                applied_fixes=(),
                warnings=(),
                level=self.level,
                parsed_value=value,
            )

        fixes: list[str] = []
        warnings: list[str] = []
        current = text

        for strategy in self.strategies[: self.max_attempts]:
            rewrite = strategy(current)
            warnings.extend(rewrite.warnings)

            if rewrite.text == current:
                continue

            fixes.extend(rewrite.fixes)
            current = rewrite.text
            logger.debug("Recovery strategy %s applied: %s", strategy.name, rewrite.fixes)

            ok, value = decode(current)
            if ok:
                return RecoveryResult(
                    original_input=text,
                    recovered_text=canonical_json(value),
                    is_valid=True,
                    applied_fixes=tuple(fixes),
                    warnings=tuple(warnings),
                    level=self.level,
                    parsed_value=value,
                )

        logger.debug(
            "JSON recovery failed at level %s after %d strategies (fixes=%s)",
            self.level.name.lower(),
            min(len(self.strategies), self.max_attempts),
            fixes,
        )
        return RecoveryResult(
            original_input=text,
            recovered_text=text if self.preserve_original_on_failure else current,
            is_valid=False,
            applied_fixes=tuple(fixes),
            warnings=tuple(warnings),
            level=self.level,
        )


def recover(text: str, level: RecoveryLevel | str = RecoveryLevel.PROGRESSIVE) -> RecoveryResult:
    """Recover JSON from text at the given level."""
    return JsonRecoveryParser(level).recover(text)
