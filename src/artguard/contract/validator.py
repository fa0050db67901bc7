"""Validation of json_schema contracts.

Per artifact: read it from the workspace, unwrap a pipeline error wrapper,
recover noisy JSON, then check the decoded value with the schema oracle.
Failures surface as ``ValidationError`` carrying everything that was tried.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import ContractConfig
from ..recovery.classifier import FailureCategory
from ..recovery.json_recovery import JsonRecoveryParser, RecoveryResult
from ..retry.controller import AdaptiveRetryController, AttemptRecord, RetrySession
from .errors import ContractConfigError, ValidationError
from .formatter import format_recovery_line, format_schema_error, format_schema_warnings
from .schema import CompiledSchema, JsonSchemaOracle, SchemaOracle
from .wrapper import WrapperConfidence, WrapperDetectionResult, detect_error_wrapper

logger = logging.getLogger(__name__)

CONTRACT_TYPE = "json_schema"


@dataclass
class ValidationOutcome:
    """A passing artifact and what it took to get there."""

    value: Any
    artifact_path: Path
    recovery: RecoveryResult | None = None
    wrapper: WrapperDetectionResult | None = None
    warnings: list[str] = field(default_factory=list)


def load_schema(
    contract: ContractConfig,
    workspace: Path | str,
    oracle: SchemaOracle | None = None,
) -> CompiledSchema:
    """Compile the contract's schema.

    Inline schemas win over ``schema_path``; a relative ``schema_path`` is
    resolved against the workspace.

    Raises:
        ContractConfigError: Unsupported contract type, no schema, or a
            schema that cannot be read or compiled.
    """
    if contract.type != CONTRACT_TYPE:
        raise ContractConfigError(f"unsupported contract type: {contract.type}")

    oracle = oracle or JsonSchemaOracle()

    if contract.schema_document is not None:
        return oracle.compile(contract.schema_document)

    if not contract.schema_path:
        raise ContractConfigError(
            "no schema or schema_path provided: specify either 'schema' (inline JSON) "
            "or 'schema_path' (file path)"
        )

    path = Path(contract.schema_path)
    if not path.is_absolute():
        path = Path(workspace) / path
    try:
        document = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ContractConfigError(f"failed to read schema file: {path}: {e}") from e
    return oracle.compile(document)


def _decode(contract: ContractConfig, data: bytes, artifact_path: Path) -> tuple[Any, RecoveryResult | None]:
    text = data.decode("utf-8", errors="replace")

    if not contract.allow_recovery:
        try:
            return json.loads(text), None
        except ValueError as e:
            raise ValidationError(
                contract_type=CONTRACT_TYPE,
                message="failed to parse artifact JSON",
                details=[f"file: {artifact_path}", str(e)],
                category=FailureCategory.FORMAT_ERROR,
            ) from e

    recovery = JsonRecoveryParser(contract.recovery_level).recover(text)
    if not recovery.is_valid:
        details = [f"file: {artifact_path}"]
        recovery_line = format_recovery_line(recovery)
        if recovery_line:
            details.append(recovery_line)
        if recovery.warnings:
            details.append(f"Warnings: {', '.join(recovery.warnings)}")
        raise ValidationError(
            contract_type=CONTRACT_TYPE,
            message="failed to parse artifact JSON after recovery attempts",
            details=details,
            category=FailureCategory.FORMAT_ERROR,
        )

    if recovery.applied_fixes:
        logger.info("JSON recovery applied to %s: %s", artifact_path, ", ".join(recovery.applied_fixes))
    return recovery.parsed_value, recovery


def check_artifact(
    contract: ContractConfig,
    workspace: Path | str,
    schema: CompiledSchema,
) -> ValidationOutcome:
    """Validate the contract's artifact against an already compiled schema.

    Raises:
        ValidationError: The artifact is missing, undecodable, or violates
            the schema while ``must_pass`` is set.
    """
    artifact_path = Path(workspace) / contract.source
    try:
        data = artifact_path.read_bytes()
    except OSError as e:
        raise ValidationError(
            contract_type=CONTRACT_TYPE,
            message=f"failed to read artifact file: {artifact_path}",
            details=[str(e)],
            category=FailureCategory.MISSING_CONTENT,
        ) from e

    wrapper = None
    if contract.wrapper_detection:
        wrapper = detect_error_wrapper(data)
        debug = wrapper.debug_info(len(data))
        if wrapper.is_wrapper:
            if wrapper.confidence == WrapperConfidence.LOW:
                logger.warning(
                    "Low-confidence error wrapper in %s, validating extracted raw_output: %s",
                    artifact_path,
                    debug.model_dump(),
                )
            else:
                logger.info("Error wrapper detected in %s: %s", artifact_path, debug.model_dump())
            data = wrapper.extracted_payload
        else:
            logger.debug("No error wrapper detected: %s", debug.model_dump())

    value, recovery = _decode(contract, data, artifact_path)
    outcome = ValidationOutcome(value=value, artifact_path=artifact_path, recovery=recovery, wrapper=wrapper)

    issues = schema.validate(value)
    if issues:
        if contract.must_pass:
            raise format_schema_error(issues, recovery, str(artifact_path))
        outcome.warnings = format_schema_warnings(issues, recovery)
        logger.warning("Schema violations in %s ignored (must_pass: false)", artifact_path)
        return outcome

    if recovery is not None and recovery.applied_fixes:
        outcome.warnings.append(f"JSON automatically corrected: {', '.join(recovery.applied_fixes)}")
    return outcome


def validate_artifact(
    contract: ContractConfig,
    workspace: Path | str,
    oracle: SchemaOracle | None = None,
) -> ValidationOutcome:
    """Validate one artifact against its json_schema contract.

    Args:
        contract: The contract.
        workspace: Step workspace; the artifact lives at ``workspace/source``.
        oracle: Schema oracle, ``JsonSchemaOracle`` by default.

    Returns:
        ValidationOutcome for a passing artifact.

    Raises:
        ContractConfigError: The contract itself is unusable.
        ValidationError: The artifact failed the contract.
    """
    schema = load_schema(contract, workspace, oracle)
    return check_artifact(contract, workspace, schema)


def validate_with_retry(
    contract: ContractConfig,
    workspace: Path | str,
    oracle: SchemaOracle | None = None,
    controller: AdaptiveRetryController | None = None,
    cancel_event: threading.Event | None = None,
    on_retry: Callable[[AttemptRecord], None] | None = None,
) -> RetrySession:
    """Validate an artifact, retrying while failures are retryable.

    The schema is compiled once up front, so configuration errors raise
    immediately instead of being retried. ``on_retry`` receives each failed
    attempt with its repair prompt; that is where the caller re-runs the
    producer before the next check.

    Returns:
        RetrySession. ``result`` holds the ValidationOutcome on success and
        ``final_error`` the last ValidationError otherwise, stamped with the
        attempt counters.

    Raises:
        ContractConfigError: The contract itself is unusable.
    """
    schema = load_schema(contract, workspace, oracle)
    controller = controller or AdaptiveRetryController(max_attempts=contract.max_attempts)

    session = controller.run(
        lambda: check_artifact(contract, workspace, schema),
        max_attempts=contract.max_attempts,
        cancel_event=cancel_event,
        on_retry=on_retry,
    )

    if isinstance(session.final_error, ValidationError):
        session.final_error.attempt = session.attempts
        session.final_error.max_attempts = session.max_attempts

    logger.info("Validation of %s: %s", contract.source, session.format_summary().splitlines()[0])
    return session
