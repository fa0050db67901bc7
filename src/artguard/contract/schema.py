"""Schema oracle adapter.

Compiling and checking JSON Schema is delegated to ``jsonschema``. The rest
of the package only sees the small protocol below, so another oracle can
be dropped in without touching recovery or classification.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from jsonschema import exceptions as jsonschema_exceptions
from jsonschema.validators import validator_for

from .errors import ContractConfigError


@dataclass(frozen=True)
class SchemaIssue:
    """One schema violation reported by the oracle."""

    message: str
    path: str = ""  # JSON pointer, "" for the document root
    keyword: str = ""  # Failing schema keyword (required, type, enum, ...)

    @property
    def location(self) -> str:
        return self.path or "(root)"

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


class CompiledSchema(Protocol):
    def validate(self, value: Any) -> list[SchemaIssue]: ...


class SchemaOracle(Protocol):
    def compile(self, document: Any) -> CompiledSchema: ...


def _pointer(parts: Any) -> str:
    return "".join(f"/{part}" for part in parts)


class JsonSchemaValidator:
    """A compiled JSON Schema."""

    def __init__(self, schema: dict[str, Any]):
        cls = validator_for(schema)
        try:
            cls.check_schema(schema)
        except jsonschema_exceptions.SchemaError as e:
            raise ContractConfigError(f"invalid JSON schema: {e.message}") from e
        self.schema = schema
        self._validator = cls(schema, format_checker=cls.FORMAT_CHECKER)

    def validate(self, value: Any) -> list[SchemaIssue]:
        """Return every violation, ordered by location."""
        errors = sorted(
            self._validator.iter_errors(value),
            key=lambda e: [str(part) for part in e.absolute_path],
        )
        return [
            SchemaIssue(
                message=error.message,
                path=_pointer(error.absolute_path),
                keyword=str(error.validator),
            )
            for error in errors
        ]


class JsonSchemaOracle:
    """Default oracle backed by the ``jsonschema`` package."""

    def compile(self, document: dict[str, Any] | str | bytes) -> JsonSchemaValidator:
        """Compile a schema document.

        Args:
            document: Decoded schema, or its JSON text.

        Returns:
            JsonSchemaValidator.

        Raises:
            ContractConfigError: If the document is not valid JSON or not a
                valid schema.
        """
        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except ValueError as e:
                raise ContractConfigError(f"failed to parse schema: {e}") from e
        if not isinstance(document, dict):
            raise ContractConfigError("schema must be a JSON object")
        return JsonSchemaValidator(document)
