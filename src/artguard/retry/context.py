"""Repair prompt building for contract retries.

Formats a classified validation failure into corrective instructions that
the pipeline re-injects into the next producer request. Nothing here
executes the text.
"""

from __future__ import annotations

from ..recovery.classifier import FailureCategory, FailureClassification

# Category-specific requirements, rendered as a numbered list.
CATEGORY_REQUIREMENTS: dict[FailureCategory, tuple[str, ...]] = {
    FailureCategory.SCHEMA_MISMATCH: (
        "Review the JSON schema carefully - every field is important",
        "Ensure ALL required fields are present with correct types",
        "Check that enum values match allowed options exactly",
        "Verify nested object structures match the schema",
        "Do NOT add any extra fields not defined in the schema",
    ),
    FailureCategory.MISSING_CONTENT: (
        "Add ALL required fields and sections",
        "Replace any placeholder text with real content",
        "Ensure no fields are empty or null unless explicitly allowed",
        "Provide complete, meaningful values for all fields",
    ),
    FailureCategory.FORMAT_ERROR: (
        "Output ONLY valid JSON - no markdown code blocks",
        "Start with { or [ and end with } or ]",
        "Do NOT include any explanatory text before or after the JSON",
        "Ensure all strings are properly quoted",
        "Check for missing commas between array/object elements",
        "Verify all brackets and braces are balanced",
    ),
    FailureCategory.QUALITY_GATE: (
        "Review quality requirements carefully",
        "Ensure content is complete and well-formatted",
        "Verify all required sections are present",
        "Remove placeholder or TODO content",
        "Meet minimum quality thresholds",
    ),
    FailureCategory.STRUCTURE: (
        "Follow proper document structure",
        "Use correct heading hierarchy (h1, h2, h3 in order)",
        "Include all required sections",
        "Ensure consistent formatting throughout",
    ),
}

# Trailing line for categories that must come back as bare JSON.
CATEGORY_FOOTERS: dict[FailureCategory, str] = {
    FailureCategory.SCHEMA_MISMATCH: (
        "Output ONLY valid JSON matching the schema - no markdown, no explanations."
    ),
}


def build_repair_context(
    classification: FailureClassification,
    attempt_number: int = 1,
    max_attempts: int = 3,
) -> str:
    """Build a repair prompt for the next producer request.

    Creates a formatted string that tells the producer:
    - What kind of failure occurred
    - What the validator reported
    - What the output must satisfy next time

    Args:
        classification: Classified validation failure.
        attempt_number: Attempt that failed (1-indexed).
        max_attempts: Maximum allowed attempts.

    Returns:
        Formatted repair prompt.
    """
    lines = [
        "=" * 60,
        "VALIDATION FAILURE - RETRY REQUIRED",
        "=" * 60,
        "",
        f"Attempt {attempt_number} of {max_attempts}",
        "",
        f"Failure Type: {classification.category.value}",
        "Error:",
        _indent(classification.message, "  "),
    ]

    if classification.details:
        lines.extend(["", "Details:"])
        lines.extend(f"  - {detail}" for detail in classification.details)

    requirements = CATEGORY_REQUIREMENTS.get(classification.category)
    if requirements:
        lines.extend(["", "CRITICAL REQUIREMENTS:"])
        lines.extend(f"{i}. {item}" for i, item in enumerate(requirements, 1))
        footer = CATEGORY_FOOTERS.get(classification.category)
        if footer:
            lines.extend(["", footer])

    if classification.suggestions:
        lines.extend(["", "Specific Suggestions:"])
        lines.extend(f"{i}. {item}" for i, item in enumerate(classification.suggestions, 1))

    if attempt_number > 1:
        lines.extend(
            [
                "",
                f"⚠ This is retry attempt {attempt_number} - be extra careful to "
                "address the specific errors above.",
            ]
        )

    remaining = max_attempts - attempt_number
    lines.extend(
        [
            "",
            "Please correct the issues and generate a valid output that passes all validation checks.",
            f"You have {remaining} attempt(s) remaining.",
            "",
            "=" * 60,
        ]
    )

    return "\n".join(lines)


def _indent(text: str, prefix: str = "  ") -> str:
    """Indent each line of text."""
    return "\n".join(prefix + line for line in text.split("\n"))
