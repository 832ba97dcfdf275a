"""
Error classification for upstream model calls.

Only transport-level exceptions cross component boundaries. This module
turns them into a ClassifiedError so retry policy and user messaging do not
depend on any one SDK's exception hierarchy. LiteLLM and the Anthropic SDK
both expose some mix of:
- an error type tag ("overloaded_error", "rate_limit_error", ...) on the
  exception or inside its JSON body
- an HTTP status (status_code, or response.status_code)
- a human-readable message
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

RETRYABLE_ERROR_TYPES = {"overloaded_error", "rate_limit_error"}
RETRYABLE_STATUS_CODES = {429, 529}
RETRYABLE_MESSAGE_MARKERS = ("429", "overloaded", "rate limit")
AUTH_ERROR_TYPES = {"authentication_error", "permission_error"}
AUTH_STATUS_CODES = {401, 403}

AUTH_HINT = "API authentication error: check your Claude API key (ANTHROPIC_API_KEY / CLAUDE_API_KEY in .env)"
OVERLOAD_HINT = (
    "Claude API is overloaded or rate limited. Reduce MAX_CONCURRENT_EXTRACTIONS or try again later."
)


class ContentExtractionError(Exception):
    """Website content could not be fetched or reduced to readable text."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"Content extraction failed for {url}: {message}")


class BatchSubmissionError(Exception):
    """The upstream batch job could not be created."""


@dataclass(frozen=True)
class ClassifiedError:
    """Normalized view of an exception raised by an upstream call."""

    kind: str  # "rate_limit" | "authentication" | "content" | "transport"
    error_type: Optional[str]
    http_status: Optional[int]
    message: str
    retryable: bool

    @property
    def is_authentication(self) -> bool:
        return self.kind == "authentication"


def _error_type(exc: BaseException) -> Optional[str]:
    """Find the API error type tag on an exception or its body."""
    for source in (getattr(exc, "body", None), getattr(exc, "error", None)):
        if isinstance(source, dict):
            nested = source.get("error")
            if isinstance(nested, dict) and isinstance(nested.get("type"), str):
                return nested["type"]
            if isinstance(source.get("type"), str) and source["type"] != "error":
                return source["type"]
    tag = getattr(exc, "type", None)
    return tag if isinstance(tag, str) else None


def _http_status(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def classify_error(exc: BaseException) -> ClassifiedError:
    """
    Classify an exception from a model, batch or website call.

    Retryable iff the error signals rate limiting or overload: a known type
    tag, HTTP 429/529, or an "overloaded"/"rate limit"/"429" message.
    Authentication errors are never retryable.
    """
    error_type = _error_type(exc)
    status = _http_status(exc)
    message = str(exc) or type(exc).__name__
    lowered = message.lower()

    if isinstance(exc, ContentExtractionError):
        return ClassifiedError("content", error_type, status, message, retryable=False)

    if (
        error_type in AUTH_ERROR_TYPES
        or status in AUTH_STATUS_CODES
        or "authenticationerror" in type(exc).__name__.lower()
    ):
        return ClassifiedError("authentication", error_type or "authentication_error", status, message, False)

    retryable = (
        error_type in RETRYABLE_ERROR_TYPES
        or status in RETRYABLE_STATUS_CODES
        or any(marker in lowered for marker in RETRYABLE_MESSAGE_MARKERS)
    )
    kind = "rate_limit" if retryable else "transport"
    return ClassifiedError(kind, error_type, status, message, retryable)


def format_error_message(context: str, exc: BaseException, entity_id: str = "") -> str:
    """
    Format an error for logs and status messages.

    Example:
        "[acme] extraction error (overloaded_error): Overloaded"
    """
    error_type = _error_type(exc) or type(exc).__name__
    prefix = f"[{entity_id}] " if entity_id else ""
    return f"{prefix}{context} error ({error_type}): {str(exc) or 'Unknown error'}"


def log_error(context: str, exc: BaseException, entity_id: str = "", logger: Any = None) -> ClassifiedError:
    """Log an upstream error with an actionable hint and return its classification."""
    logger = logger or logging.getLogger(__name__)
    classified = classify_error(exc)
    logger.error(format_error_message(context, exc, entity_id))
    if classified.is_authentication:
        logger.error(AUTH_HINT)
    elif classified.retryable:
        logger.warning(OVERLOAD_HINT)
    return classified
