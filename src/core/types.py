"""
Core types shared across modules.

This module provides the base enums used by the error hierarchy and the
retry layer so that every module classifies failures the same way.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., network timeouts, 429/503 errors)
        AUTH: Authentication failures requiring credential refresh
              (e.g., 401 errors, revoked auth)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., 404, validation errors, configuration issues)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = ["ErrorCategory"]
