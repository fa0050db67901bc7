"""Actionable messages for schema validation failures.

Turns the oracle's issues plus the recovery result into the detail lines of
a ``ValidationError``: what failed, what to change, and what recovery had to
do to get the artifact decodable in the first place.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..recovery.classifier import FailureCategory
from ..recovery.json_recovery import RecoveryResult
from ..recovery.strategies import RecoveryLevel
from .errors import ValidationError
from .schema import SchemaIssue

SUGGESTION_LIMIT = 3


@dataclass(frozen=True)
class IssueKind:
    """Guidance for one family of schema keywords."""

    name: str
    message: str
    suggestions: tuple[str, ...]
    pitfalls: tuple[str, ...] = ()
    example: str = ""


MISSING_REQUIRED = IssueKind(
    name="missing_required_fields",
    message="Required fields are missing from the JSON output",
    suggestions=(
        "Check the schema to identify all required fields",
        "Ensure all mandatory properties are included in the output",
        "Verify that field names match the schema exactly (case-sensitive)",
    ),
    pitfalls=(
        "Field names with typos or incorrect casing",
        "Fields with null values when null is not allowed",
        "Missing nested required properties",
    ),
    example=(
        "Example:\n"
        'Required: {"name": "string", "type": "string"}\n'
        'Invalid: {"name": "example"}  // missing \'type\'\n'
        'Valid:   {"name": "example", "type": "feature"}'
    ),
)

TYPE_MISMATCH = IssueKind(
    name="type_mismatch",
    message="Field types don't match the schema requirements",
    suggestions=(
        "Check that string values are quoted",
        "Ensure numbers are not quoted",
        "Verify boolean values are true/false (not quoted)",
        "Confirm array fields are in [...] brackets",
        "Verify object fields are in {...} braces",
    ),
    pitfalls=(
        'Numbers as strings: "123" instead of 123',
        'Booleans as strings: "true" instead of true',
        "Arrays or objects encoded as strings",
    ),
    example=(
        "Example:\n"
        'Schema expects: {"count": number, "enabled": boolean}\n'
        'Invalid: {"count": "5", "enabled": "true"}\n'
        'Valid:   {"count": 5, "enabled": true}'
    ),
)

ENUM_VIOLATION = IssueKind(
    name="enum_violation",
    message="Field value is not in the allowed list of options",
    suggestions=(
        "Check the schema for the exact allowed values (enum)",
        "Ensure the value matches exactly (case-sensitive)",
        "Remove any extra whitespace from the value",
    ),
    pitfalls=(
        "Case sensitivity: 'Bug' vs 'bug'",
        "Extra whitespace: ' bug ' vs 'bug'",
        "Using similar but not exact values",
    ),
)

ADDITIONAL_PROPERTIES = IssueKind(
    name="additional_properties",
    message="Extra fields found that are not defined in the schema",
    suggestions=(
        "Remove any fields not defined in the schema",
        "Check for typos in field names",
    ),
    pitfalls=(
        "Adding explanation or metadata fields",
        "Misspelled field names creating extra fields",
    ),
)

ARRAY_ISSUES = IssueKind(
    name="array_issues",
    message="Array field validation failed",
    suggestions=(
        "Ensure array fields use proper JSON array syntax [...]",
        "Check that array items match the expected schema",
        "Verify minimum/maximum array length requirements",
    ),
    pitfalls=(
        "Using strings instead of arrays",
        "Incorrect item types within arrays",
        "Empty arrays when minimum length is required",
    ),
    example=(
        "Example:\n"
        'Schema expects: {"tags": ["string"]}\n'
        'Invalid: {"tags": "tag1,tag2"}\n'
        'Valid:   {"tags": ["tag1", "tag2"]}'
    ),
)

FORMAT_VIOLATION = IssueKind(
    name="format_violation",
    message="String format validation failed",
    suggestions=(
        "Check the expected string format in the schema",
        "Ensure dates are in ISO format (YYYY-MM-DD or RFC3339)",
        "Verify URLs are complete and valid",
    ),
    pitfalls=(
        "Partial URLs missing protocol (http/https)",
        "Invalid date formats",
    ),
)

GENERIC = IssueKind(
    name="schema_violation",
    message="JSON schema validation failed",
    suggestions=(
        "Review the schema carefully to understand the expected structure",
        "Ensure all required fields are present with correct types",
        "Verify that field names match the schema exactly",
    ),
    pitfalls=(
        "Case-sensitive field names and enum values",
        "Using incorrect data types for fields",
    ),
)

KEYWORD_KINDS: dict[str, IssueKind] = {
    "required": MISSING_REQUIRED,
    "dependentRequired": MISSING_REQUIRED,
    "type": TYPE_MISMATCH,
    "enum": ENUM_VIOLATION,
    "const": ENUM_VIOLATION,
    "additionalProperties": ADDITIONAL_PROPERTIES,
    "unevaluatedProperties": ADDITIONAL_PROPERTIES,
    "items": ARRAY_ISSUES,
    "prefixItems": ARRAY_ISSUES,
    "minItems": ARRAY_ISSUES,
    "maxItems": ARRAY_ISSUES,
    "uniqueItems": ARRAY_ISSUES,
    "contains": ARRAY_ISSUES,
    "format": FORMAT_VIOLATION,
    "pattern": FORMAT_VIOLATION,
}

RECOVERED_NOTE = (
    "Note: The JSON was automatically corrected for formatting issues, "
    "but schema compliance still failed"
)
AGGRESSIVE_NOTE = (
    "The input required aggressive reconstruction - consider outputting valid JSON directly"
)
UNIVERSAL_SUGGESTION = "Output only valid JSON - no markdown code blocks or explanatory text"


@dataclass
class SchemaErrorAnalysis:
    """Guidance derived from a set of schema issues."""

    kind: IssueKind
    suggestions: list[str] = field(default_factory=list)
    pitfalls: list[str] = field(default_factory=list)

    @property
    def main_message(self) -> str:
        return self.kind.message


def analyze_schema_issues(
    issues: list[SchemaIssue],
    recovery: RecoveryResult | None = None,
) -> SchemaErrorAnalysis:
    """Pick guidance for the first issue with a known keyword.

    Args:
        issues: Violations from the schema oracle.
        recovery: Recovery result for the artifact, if recovery ran.

    Returns:
        SchemaErrorAnalysis with suggestions and pitfalls to show.
    """
    kind = GENERIC
    for issue in issues:
        if issue.keyword in KEYWORD_KINDS:
            kind = KEYWORD_KINDS[issue.keyword]
            break

    analysis = SchemaErrorAnalysis(
        kind=kind,
        suggestions=list(kind.suggestions),
        pitfalls=list(kind.pitfalls),
    )

    if recovery is not None:
        if recovery.applied_fixes:
            analysis.suggestions.append(RECOVERED_NOTE)
        if recovery.level == RecoveryLevel.AGGRESSIVE and recovery.applied_fixes:
            analysis.pitfalls.append(AGGRESSIVE_NOTE)

    analysis.suggestions.append(UNIVERSAL_SUGGESTION)
    return analysis


def format_recovery_line(recovery: RecoveryResult | None) -> str | None:
    """Detail line naming the recovery fixes, or None when nothing was fixed."""
    if recovery is None or not recovery.applied_fixes:
        return None
    return f"JSON Recovery Applied: {', '.join(recovery.applied_fixes)}"


def format_schema_error(
    issues: list[SchemaIssue],
    recovery: RecoveryResult | None,
    artifact_path: str,
) -> ValidationError:
    """Build a retryable schema-mismatch ValidationError.

    Args:
        issues: Violations from the schema oracle.
        recovery: Recovery result for the artifact, if recovery ran.
        artifact_path: Path shown in the details.

    Returns:
        ValidationError with ordered, actionable details.
    """
    analysis = analyze_schema_issues(issues, recovery)

    details = [f"File: {artifact_path}"]

    recovery_line = format_recovery_line(recovery)
    if recovery_line:
        details.append(recovery_line)

    details.append("Schema Validation Errors:")
    details.extend(f"  • {issue}" for issue in issues)

    details.append("Suggested Fixes:")
    details.extend(f"  {i}. {item}" for i, item in enumerate(analysis.suggestions, 1))

    if analysis.pitfalls:
        details.append("Common Issues to Check:")
        details.extend(f"  ⚠ {item}" for item in analysis.pitfalls)

    if analysis.kind.example:
        details.append("Example Fix:")
        details.append(analysis.kind.example)

    if recovery is not None and recovery.warnings:
        details.append("Recovery Warnings:")
        details.extend(f"  ⚠ {warning}" for warning in recovery.warnings)

    return ValidationError(
        contract_type="json_schema",
        message=analysis.main_message,
        details=details,
        retryable=True,
        category=FailureCategory.SCHEMA_MISMATCH,
    )


def format_schema_warnings(
    issues: list[SchemaIssue],
    recovery: RecoveryResult | None,
) -> list[str]:
    """Warning lines for a schema failure that does not block the step."""
    warnings = []
    if recovery is not None and recovery.applied_fixes:
        warnings.append(f"JSON automatically corrected: {', '.join(recovery.applied_fixes)}")

    analysis = analyze_schema_issues(issues, recovery)
    warnings.append(f"Schema validation issue: {analysis.main_message}")
    warnings.extend(f"Suggestion: {item}" for item in analysis.suggestions[:SUGGESTION_LIMIT])
    return warnings
