"""Exception taxonomy for receipt scanning and the companion LLM flows."""

import logging
from collections.abc import Awaitable
from typing import TypeVar

import anthropic
from google.api_core import exceptions as google_exceptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_TRANSCRIBE = "transcribe"
STAGE_STRUCTURE = "structure"

# Anthropic reports overload as 529; gateways in front of it use 503.
UNAVAILABLE_STATUS_CODES = frozenset({503, 529})
UNAVAILABLE_MARKERS = ("503", "overloaded", "unavailable")

UNAVAILABLE_MESSAGE = (
    "The AI service is currently overloaded or unavailable. "
    "Please try again in a few moments."
)


class ExtractionError(Exception):
    """Base exception for extraction errors."""


class ExtractionRefusedError(ExtractionError):
    """Raised when the model refuses to process the request."""


class ExtractionIncompleteError(ExtractionError):
    """Raised when the response is truncated due to token limits."""


class MalformedInputError(ExtractionError, ValueError):
    """Raised when the caller supplies no usable image."""


class ServiceUnavailableError(ExtractionError):
    """The hosted model reported overload or unavailability."""

    def __init__(self, stage: str, detail: str = "") -> None:
        super().__init__(UNAVAILABLE_MESSAGE)
        self.stage = stage
        self.detail = detail


class ExtractionFailedError(ExtractionError):
    """A stage produced no usable output or failed schema validation."""

    def __init__(self, stage: str, detail: str) -> None:
        super().__init__(f"AI processing failed during the {stage} stage: {detail}")
        self.stage = stage
        self.detail = detail


def is_service_unavailable(exc: BaseException) -> bool:
    """Return True if ``exc`` signals an overloaded or unavailable hosted model.

    Structured status codes exposed by the Anthropic and Google clients are
    checked first. The message is always checked as well, since an overload
    can arrive on any status (a 500, or a 200 that fails mid-stream).
    """
    if isinstance(exc, google_exceptions.ServiceUnavailable):
        return True
    if (
        isinstance(exc, anthropic.APIStatusError)
        and exc.status_code in UNAVAILABLE_STATUS_CODES
    ):
        return True

    message = str(exc).lower()
    return any(marker in message for marker in UNAVAILABLE_MARKERS)


def classify_failure(stage: str, exc: BaseException) -> ExtractionError:
    """Map a raw stage failure onto the pipeline-level error it should surface as."""
    if isinstance(
        exc, ServiceUnavailableError | ExtractionFailedError | MalformedInputError
    ):
        return exc
    if is_service_unavailable(exc):
        return ServiceUnavailableError(stage, str(exc))
    return ExtractionFailedError(stage, str(exc) or type(exc).__name__)


async def run_classified(stage: str, awaitable: Awaitable[T]) -> T:
    """Await one hosted-model stage, re-raising failures as classified errors."""
    try:
        return await awaitable
    except Exception as e:
        logger.error("Stage %r failed: %s", stage, e)
        error = classify_failure(stage, e)
        if error is e:
            raise
        raise error from e
