"""Error wrapper detection.

When a step fails validation the pipeline stores the agent output inside an
envelope (error_type, raw_output, attempts, ...). If that envelope is fed
back as the artifact on the next run, it must be recognised and unwrapped
rather than validated as the payload itself.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)

# Fields counted towards the wrapper decision, in report order.
INDICATOR_FIELDS = ("error_type", "raw_output", "contract_type", "step_id", "final_error", "attempts")

MIN_INDICATORS = 3
HIGH_CONFIDENCE_INDICATORS = 6
MEDIUM_CONFIDENCE_INDICATORS = 4


class WrapperConfidence(str, Enum):
    """Confidence that a document is an error wrapper."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)

    def demoted(self) -> WrapperConfidence:
        """One tier lower, bottoming out at low."""
        return _CONFIDENCE_ORDER[max(self.rank - 1, 0)]


_CONFIDENCE_ORDER = (WrapperConfidence.LOW, WrapperConfidence.MEDIUM, WrapperConfidence.HIGH)


class ErrorWrapper(BaseModel):
    """Envelope the pipeline writes around a failed artifact."""

    # Strict so JSON types are not coerced: `"attempts": true` is not a count.
    model_config = ConfigDict(extra="ignore", strict=True)

    attempts: int | None = None
    contract_type: str | None = None
    error_type: str | None = None
    exit_code: int | None = None
    final_error: str | None = None
    raw_output: str | None = None
    recommendations: list[str] | None = None
    step_id: str | None = None
    timestamp: str | None = None
    tokens_used: int | None = None
    must_pass: bool | None = None
    persona: str | None = None

    def indicators(self) -> list[str]:
        """Names of populated indicator fields."""
        matched = []
        for name in INDICATOR_FIELDS:
            value = getattr(self, name)
            if name == "attempts":
                if value is not None and value > 0:
                    matched.append(name)
            elif value:
                matched.append(name)
        return matched


class WrapperDebugInfo(BaseModel):
    """Debug view of a detection, for logs and CLI output."""

    input_length: int
    detection_attempted: bool = True
    wrapper_detected: bool
    fields_matched: list[str]
    extracted_length: int | None = None
    extraction_method: str | None = None
    confidence: WrapperConfidence


@dataclass(frozen=True)
class WrapperDetectionResult:
    """Result of error wrapper detection."""

    is_wrapper: bool = False
    confidence: WrapperConfidence = WrapperConfidence.LOW
    matched_fields: frozenset[str] = field(default_factory=frozenset)
    extracted_payload: bytes = b""
    source_field: str = ""
    wrapper: ErrorWrapper | None = None

    def debug_info(self, input_length: int) -> WrapperDebugInfo:
        """Summarize the detection for debugging."""
        fields = [name for name in INDICATOR_FIELDS if name in self.matched_fields]
        info = WrapperDebugInfo(
            input_length=input_length,
            wrapper_detected=self.is_wrapper,
            fields_matched=fields,
            confidence=self.confidence,
        )
        if self.is_wrapper:
            info.extracted_length = len(self.extracted_payload)
            info.extraction_method = self.source_field
        return info


def _confidence_for(indicators: int) -> WrapperConfidence:
    if indicators >= HIGH_CONFIDENCE_INDICATORS:
        return WrapperConfidence.HIGH
    if indicators >= MEDIUM_CONFIDENCE_INDICATORS:
        return WrapperConfidence.MEDIUM
    return WrapperConfidence.LOW


def _payload_decodes(payload: bytes) -> bool:
    try:
        json.loads(payload)
    except ValueError:
        return False
    return True


def detect_error_wrapper(data: bytes | str) -> WrapperDetectionResult:
    """Decide whether ``data`` is an error wrapper and extract its payload.

    Never raises: anything that is not a JSON object of the wrapper shape
    is reported as not a wrapper.

    Args:
        data: Raw artifact content.

    Returns:
        WrapperDetectionResult. ``extracted_payload`` holds ``raw_output``
        when ``is_wrapper`` is set.
    """
    try:
        wrapper = ErrorWrapper.model_validate_json(data)
    except (PydanticValidationError, ValueError):
        return WrapperDetectionResult()

    matched = wrapper.indicators()

    if not (wrapper.error_type and wrapper.raw_output and len(matched) >= MIN_INDICATORS):
        return WrapperDetectionResult(matched_fields=frozenset(matched))

    payload = wrapper.raw_output.encode("utf-8")
    confidence = _confidence_for(len(matched))
    if not _payload_decodes(payload):
        confidence = confidence.demoted()

    logger.debug("Error wrapper detected: fields=%s confidence=%s", matched, confidence.value)

    return WrapperDetectionResult(
        is_wrapper=True,
        confidence=confidence,
        matched_fields=frozenset(matched),
        extracted_payload=payload,
        source_field="raw_output",
        wrapper=wrapper,
    )
