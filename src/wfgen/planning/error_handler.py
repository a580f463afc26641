"""Classification of the failures that send an AI stage to its fallback.

AI-stage failures never reach the caller as exceptions. They are classified
here so the fallback can be logged and reported in the generation result.
"""

import logging
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from wfgen.core.exceptions import GenerationCancelledError, GenerationUnavailableError

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Why an AI stage fell back to its deterministic path."""

    NETWORK = "network"  # Connection refused, DNS, dropped stream
    TIMEOUT = "timeout"
    SERVICE_UNAVAILABLE = "service_unavailable"  # Non-2xx status
    INVALID_RESPONSE = "invalid_response"  # No JSON, wrong shape, bad field values
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class FallbackReason:
    """Structured description of one fallback."""

    def __init__(self, stage: str, category: ErrorCategory, message: str, technical_details: Optional[str] = None):
        self.stage = stage
        self.category = category
        self.message = message
        self.technical_details = technical_details

    def to_dict(self) -> dict[str, Any]:
        data = {"stage": self.stage, "category": self.category.value, "message": self.message}
        if self.technical_details:
            data["details"] = self.technical_details
        return data

    def __repr__(self) -> str:
        return f"FallbackReason({self.stage!r}, {self.category.value!r}, {self.message!r})"


def classify_error(exc: BaseException, stage: str) -> FallbackReason:
    """Classify the exception that made ``stage`` fall back."""
    details = str(exc)
    logger.debug(f"Classifying {type(exc).__name__} from {stage}: {details[:200]}", extra={"stage": stage})

    if isinstance(exc, GenerationCancelledError):
        return FallbackReason(stage, ErrorCategory.CANCELLED, "Request was cancelled", details)

    if isinstance(exc, GenerationUnavailableError):
        if exc.status_code is not None:
            return FallbackReason(
                stage,
                ErrorCategory.SERVICE_UNAVAILABLE,
                f"Generation service answered with HTTP {exc.status_code}",
                details,
            )
        text = details.lower()
        if "timed out" in text or "timeout" in text:
            return FallbackReason(stage, ErrorCategory.TIMEOUT, "Generation service timed out", details)
        if "malformed" in text:
            return FallbackReason(stage, ErrorCategory.INVALID_RESPONSE, "Generation service sent malformed data", details)
        return FallbackReason(stage, ErrorCategory.NETWORK, "Generation service is unreachable", details)

    if isinstance(exc, (ValidationError, ValueError, KeyError, TypeError)):
        return FallbackReason(stage, ErrorCategory.INVALID_RESPONSE, "Model response could not be used", details)

    return FallbackReason(stage, ErrorCategory.UNKNOWN, f"Unexpected error in {stage}", details)
