"""
Typed errors with retry classification.

Engine code raises PipelineError subclasses; foreign exceptions are
mapped onto an ErrorCategory with classify_exception / wrap_exception.
"""

from core.errors.exceptions import (
    AuthError,
    ConfigurationError,
    PermanentError,
    PipelineError,
    ReportingError,
    RetrievalError,
    SinkFullError,
    StreamError,
    ThrottlingError,
    TransientError,
    classify_exception,
    classify_http_status,
    is_retryable_error,
    wrap_exception,
)
from core.types import ErrorCategory

__all__ = [
    "ErrorCategory",
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    "ThrottlingError",
    "ConfigurationError",
    "RetrievalError",
    "StreamError",
    "ReportingError",
    "SinkFullError",
    "classify_http_status",
    "classify_exception",
    "is_retryable_error",
    "wrap_exception",
]
