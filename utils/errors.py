"""
Error taxonomy for the generation pipeline.

The generative backend reports failures in loosely shaped exceptions, so every
raw error is classified once, at the boundary, into an ErrorKind.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Optional


SCRIPT_NO_TIMECODES_CODE = "script.no_timecodes"
SCRIPT_NO_CUES_CODE = "script.no_cues"
SCRIPT_TOO_LONG_CODE = "script.too_long"
QUOTA_EXCEEDED_CODE = "quota.exceeded"
GENERATION_CANCELLED_CODE = "generation.cancelled"
GENERATION_IN_PROGRESS_CODE = "generation.in_progress"
IMAGE_NO_DATA_CODE = "image.no_data"
IMAGE_FAILED_CODE = "image.failed"
STORYBOARD_EMPTY_CODE = "storyboard.empty"
STORYBOARD_FAILED_CODE = "storyboard.failed"
EXPORT_NO_SEGMENTS_CODE = "export.no_segments"
EXPORT_EMPTY_OUTPUT_CODE = "export.empty_output"
EXPORT_ENCODER_UNAVAILABLE_CODE = "export.encoder_unavailable"
EXPORT_ENCODER_FAILED_CODE = "export.encoder_failed"
EXPORT_IMAGE_MISSING_CODE = "export.image_missing"
SEGMENT_INVALID_TRANSITION_CODE = "segment.invalid_transition"
SEGMENT_NOT_FOUND_CODE = "segment.not_found"

_RATE_LIMIT_KEYWORDS = ("429", "quota", "resource_exhausted")
_NOT_FOUND_KEYWORDS = ("404", "not_found", "not found")


class ViralCutError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ScriptValidationError(ViralCutError):
    """Subtitle input rejected before any generation work starts."""


class QuotaExceededError(ViralCutError):
    def __init__(self, message: str = "Daily image generation quota exceeded") -> None:
        super().__init__(QUOTA_EXCEEDED_CODE, message)


class GenerationCancelled(ViralCutError):
    def __init__(self, message: str = "Cancelled") -> None:
        super().__init__(GENERATION_CANCELLED_CODE, message)


class GenerationInProgressError(ViralCutError):
    def __init__(self, message: str = "Image generation is running; stop it first") -> None:
        super().__init__(GENERATION_IN_PROGRESS_CODE, message)


class ImageGenerationError(ViralCutError):
    pass


class StoryboardError(ViralCutError):
    pass


class ExportError(ViralCutError):
    pass


class InvalidTransitionError(ViralCutError):
    def __init__(self, message: str) -> None:
        super().__init__(SEGMENT_INVALID_TRANSITION_CODE, message)


class SegmentNotFoundError(ViralCutError):
    def __init__(self, segment_id: str) -> None:
        super().__init__(SEGMENT_NOT_FOUND_CODE, f"segment not found: {segment_id}")
        self.segment_id = segment_id


class ErrorKind(str, Enum):
    """Classification of a raw collaborator error."""
    TRANSIENT = "transient"
    FATAL = "fatal"
    CANCELLED = "cancelled"
    OTHER = "other"


def _nested_error(error: Any) -> Optional[dict]:
    """Return the Google-style `{"error": {...}}` payload carried by an exception, if any."""
    for attr in ("error", "details", "response_json"):
        payload = getattr(error, attr, None)
        if isinstance(payload, dict):
            nested = payload.get("error", payload)
            if isinstance(nested, dict):
                return nested
    return None


def _status_codes(error: Any) -> list:
    codes = []
    for attr in ("status", "code", "status_code"):
        value = getattr(error, attr, None)
        if value is not None:
            codes.append(value)
    nested = _nested_error(error)
    if nested:
        codes.extend(v for v in (nested.get("code"), nested.get("status")) if v is not None)
    return codes


def _error_text(error: Any) -> str:
    message = getattr(error, "message", None) or str(error)
    if not message:
        try:
            message = json.dumps(getattr(error, "__dict__", {}), default=str)
        except (TypeError, ValueError):
            message = repr(error)
    return message.lower()


def is_rate_limit_error(error: Any) -> bool:
    """True when the error signals rate limiting / quota exhaustion (HTTP 429)."""
    if error is None:
        return False
    for value in _status_codes(error):
        if value == 429 or str(value) == "429":
            return True
        if isinstance(value, str) and value.upper() == "RESOURCE_EXHAUSTED":
            return True
    text = _error_text(error)
    return any(keyword in text for keyword in _RATE_LIMIT_KEYWORDS)


def is_not_found_error(error: Any) -> bool:
    if error is None:
        return False
    for value in _status_codes(error):
        if value == 404 or str(value) == "404":
            return True
        if isinstance(value, str) and value.upper() == "NOT_FOUND":
            return True
    text = _error_text(error)
    return any(keyword in text for keyword in _NOT_FOUND_KEYWORDS)


def classify_error(error: BaseException) -> ErrorKind:
    """Map a raw exception from the generative backend onto an ErrorKind."""
    if isinstance(error, (GenerationCancelled, asyncio.CancelledError)):
        return ErrorKind.CANCELLED
    if is_rate_limit_error(error):
        return ErrorKind.TRANSIENT
    if is_not_found_error(error):
        return ErrorKind.FATAL
    return ErrorKind.OTHER
