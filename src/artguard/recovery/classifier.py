"""Failure classification for contract validation errors.

Classifies validation failures into categories so retries target the
actual defect:
- schema_mismatch: Decoded, but the value does not match the schema
- missing_content: Required fields or sections are absent
- format_error: Output is not parseable (JSON syntax, fences, prose)
- quality_gate: Quality rules over the artifact failed
- structure: Document hierarchy is wrong
- unknown: Unclassified, not retried
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..contract.errors import ValidationError


class FailureCategory(str, Enum):
    """Category of a validation failure."""

    SCHEMA_MISMATCH = "schema_mismatch"
    MISSING_CONTENT = "missing_content"
    FORMAT_ERROR = "format_error"
    QUALITY_GATE = "quality_gate"
    STRUCTURE = "structure"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FailureClassification:
    """Result of failure classification."""

    category: FailureCategory
    confidence: float  # 0.0 to 1.0
    retryable: bool
    suggestions: tuple[str, ...]
    message: str = ""
    details: tuple[str, ...] = field(default_factory=tuple)


# Ordered keyword rules for errors whose category is not declared.
# Each rule is (keywords, category, confidence, suggestions).
KEYWORD_RULES: list[tuple[tuple[str, ...], FailureCategory, float, tuple[str, ...]]] = [
    (
        ("quality gate",),
        FailureCategory.QUALITY_GATE,
        0.9,
        (
            "Review quality gate requirements",
            "Improve content completeness and formatting",
        ),
    ),
    (
        ("schema", "does not match"),
        FailureCategory.SCHEMA_MISMATCH,
        0.85,
        (
            "Review the JSON schema requirements",
            "Ensure all required fields are present",
            "Check field types match schema",
        ),
    ),
    (
        ("missing", "required"),
        FailureCategory.MISSING_CONTENT,
        0.9,
        (
            "Add all required fields and sections",
            "Check for empty or placeholder values",
        ),
    ),
    (
        ("parse", "syntax", "json"),
        FailureCategory.FORMAT_ERROR,
        0.95,
        (
            "Fix JSON syntax errors",
            "Ensure valid JSON structure",
            "Check for missing commas, brackets, or quotes",
        ),
    ),
    (
        ("structure", "hierarchy"),
        FailureCategory.STRUCTURE,
        0.8,
        (
            "Review document structure requirements",
            "Ensure proper heading hierarchy",
        ),
    ),
]

UNKNOWN_SUGGESTIONS = ("Review the error message for specific guidance",)

# Suggestions for structured errors, keyed by the category they resolve to.
CATEGORY_SUGGESTIONS: dict[FailureCategory, tuple[str, ...]] = {
    FailureCategory.FORMAT_ERROR: (
        "Fix JSON syntax errors",
        "Ensure the output is valid JSON",
        "Remove any markdown code blocks or explanatory text",
    ),
    FailureCategory.SCHEMA_MISMATCH: (
        "Review the schema requirements carefully",
        "Ensure all required fields are included",
        "Verify field types match the schema",
        "Check enum values are valid",
    ),
    FailureCategory.MISSING_CONTENT: (
        "Add all required fields and sections",
        "Replace placeholder text with real content",
    ),
    FailureCategory.STRUCTURE: (
        "Ensure proper markdown structure",
        "Include all required sections",
        "Use correct heading hierarchy",
    ),
    FailureCategory.QUALITY_GATE: (
        "Review test failures",
        "Fix any failing test cases",
        "Ensure code quality meets standards",
    ),
    FailureCategory.UNKNOWN: UNKNOWN_SUGGESTIONS,
}

STRUCTURED_CONFIDENCE = 0.95


def classify_message(message: str, details: tuple[str, ...] = ()) -> FailureClassification:
    """Classify a free-form error message with the keyword rules.

    Args:
        message: The error message to classify.
        details: Optional detail lines carried into the result.

    Returns:
        FailureClassification; unknown and non-retryable if nothing matches.
    """
    normalized = message.lower()

    for keywords, category, confidence, suggestions in KEYWORD_RULES:
        if any(keyword in normalized for keyword in keywords):
            return FailureClassification(
                category=category,
                confidence=confidence,
                retryable=True,
                suggestions=suggestions,
                message=message,
                details=details,
            )

    return FailureClassification(
        category=FailureCategory.UNKNOWN,
        confidence=0.5,
        retryable=False,
        suggestions=UNKNOWN_SUGGESTIONS,
        message=message,
        details=details,
    )


def _classify_validation_error(error: ValidationError) -> FailureClassification:
    details = tuple(error.details)

    if error.category is not None:
        category = FailureCategory(error.category)
    elif error.contract_type == "json_schema":
        if "parse" in error.message.lower():
            category = FailureCategory.FORMAT_ERROR
        else:
            category = FailureCategory.SCHEMA_MISMATCH
    elif error.contract_type == "markdown_spec":
        category = FailureCategory.STRUCTURE
    elif error.contract_type == "test_suite":
        category = FailureCategory.QUALITY_GATE
    else:
        # Undeclared contract types: fall back to the message, keep the
        # producer's retryability.
        by_message = classify_message(error.message, details)
        return FailureClassification(
            category=by_message.category,
            confidence=by_message.confidence,
            retryable=error.retryable and by_message.category != FailureCategory.UNKNOWN,
            suggestions=by_message.suggestions,
            message=error.message,
            details=details,
        )

    return FailureClassification(
        category=category,
        confidence=STRUCTURED_CONFIDENCE,
        retryable=error.retryable,
        suggestions=CATEGORY_SUGGESTIONS[category],
        message=error.message,
        details=details,
    )


def classify_failure(error: BaseException | str | None) -> FailureClassification | None:
    """Classify a validation failure.

    Structured ``ValidationError``s are classified by their declared category
    or contract type. Anything else (typically errors from the external
    schema oracle) is classified by keyword matching on its message.

    Args:
        error: The failure to classify.

    Returns:
        FailureClassification, or None when there is no error.
    """
    if error is None:
        return None

    if isinstance(error, ValidationError):
        return _classify_validation_error(error)

    return classify_message(str(error))


def is_retryable(error: BaseException | str | None) -> bool:
    """Quick check if a failure is worth retrying."""
    classification = classify_failure(error)
    return classification is not None and classification.retryable
