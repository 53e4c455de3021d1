"""
Exception hierarchy for firebase_ingest.

Every error raised by the engine carries an ErrorCategory so the retry
layer and the failure reporter can decide what to do without inspecting
messages. Foreign exceptions (aiohttp, asyncio, OSError) are classified
once at the boundary by classify_exception / wrap_exception.
"""

import asyncio
import errno

import aiohttp

from core.types import ErrorCategory

RETRYABLE_CATEGORIES = (ErrorCategory.TRANSIENT, ErrorCategory.AUTH, ErrorCategory.UNKNOWN)


class PipelineError(Exception):
    """
    Base exception for all engine errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Extra fields for logging and failure events
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES

    @property
    def should_refresh_auth(self) -> bool:
        return self.category == ErrorCategory.AUTH

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} | Caused by: {self.cause}"
        return self.message


class AuthError(PipelineError):
    """Credentials rejected; the cached auth value must be re-derived."""

    category = ErrorCategory.AUTH


class TransientError(PipelineError):
    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransientError):
    """HTTP 429. ``retry_after`` is the server's requested wait in seconds."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after


class PermanentError(PipelineError):
    category = ErrorCategory.PERMANENT


class ConfigurationError(PermanentError):
    """Invalid configuration (schedule, query spec, options).

    Fatal at startup: prevents the input from entering the running state.
    """


class RetrievalError(PipelineError):
    """A fetch against the remote database failed.

    Category is decided per instance from the HTTP status or the underlying
    transport failure. Recovered per query and turned into a failure event.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        status_code: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.category = category
        self.status_code = status_code


class StreamError(RetrievalError):
    """Subscription-level error reported by a streaming connection.

    Does not close the subscription; reconnecting is decided separately.
    """


class ReportingError(PipelineError):
    """Building or emitting a failure event failed. Never escalated."""


class SinkFullError(TransientError):
    """The downstream sink did not accept an event within its enqueue timeout."""


def classify_http_status(status_code: int) -> ErrorCategory:
    """Map a Firebase REST status code to an error category.

    401 means the secret or token was rejected. 408, 429 and 5xx may
    recover on their own. Any other 4xx (403 rules denial, 404 bad path,
    400 bad query) will not.
    """
    if status_code < 400:
        # 2xx is not an error; 3xx is unexpected from the REST API and
        # is treated as transient by callers that see it
        return ErrorCategory.UNKNOWN
    if status_code == 401:
        return ErrorCategory.AUTH
    if status_code in (408, 429) or status_code >= 500:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.PERMANENT


_PERMANENT_ERRNOS = frozenset({errno.ENOSPC, errno.EROFS, errno.EACCES, errno.EPERM})

# Ordered: first matching group wins
_MESSAGE_MARKERS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.TRANSIENT,
        (
            "connectionerror",
            "connection refused",
            "connection reset",
            "connection aborted",
            "serverdisconnected",
            "no route to host",
            "network unreachable",
            "name resolution",
            "dns",
            "socket",
            "broken pipe",
            "timeout",
        ),
    ),
    (
        ErrorCategory.AUTH,
        ("401", "unauthorized", "permission denied", "auth_revoked", "token expired", "invalid token"),
    ),
    (ErrorCategory.TRANSIENT, ("429", "rate limit", "502", "503", "504")),
    (ErrorCategory.PERMANENT, ("403", "forbidden", "404", "not found")),
)


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an arbitrary exception, most specific evidence first."""
    if isinstance(exc, PipelineError):
        return exc.category
    if isinstance(exc, aiohttp.ClientResponseError):
        return classify_http_status(exc.status)
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ClientConnectionError, aiohttp.ClientPayloadError)):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, OSError) and exc.errno is not None:
        if exc.errno in _PERMANENT_ERRNOS:
            return ErrorCategory.PERMANENT
        return ErrorCategory.TRANSIENT

    haystack = f"{type(exc).__name__} {exc}".lower()
    for category, markers in _MESSAGE_MARKERS:
        if any(marker in haystack for marker in markers):
            return category
    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """Return ``exc`` as a PipelineError, choosing the subclass by category.

    PipelineErrors pass through unchanged apart from merging ``context``.
    """
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    text = str(exc).lower()
    context = dict(context or {})
    message = str(exc) or type(exc).__name__

    throttled = "429" in text or (
        isinstance(exc, aiohttp.ClientResponseError) and exc.status == 429
    )
    if isinstance(exc, asyncio.TimeoutError) or "timeout" in text:
        context["error_type"] = "timeout"
    elif throttled:
        context["error_type"] = "throttling"
    elif "404" in text or "not found" in text:
        context["error_type"] = "not_found"

    if category == ErrorCategory.AUTH:
        return AuthError(message, cause=exc, context=context)
    if category == ErrorCategory.TRANSIENT:
        error_class = ThrottlingError if throttled else TransientError
        return error_class(message, cause=exc, context=context)
    if category == ErrorCategory.PERMANENT:
        return PermanentError(message, cause=exc, context=context)
    return default_class(message, cause=exc, context=context)


def is_retryable_error(exc: Exception) -> bool:
    """True for transient, auth (after refresh) and unknown errors."""
    if isinstance(exc, PipelineError):
        return exc.is_retryable
    return classify_exception(exc) in RETRYABLE_CATEGORIES
