"""
Core library: Reusable, infrastructure-agnostic components.

Modules:
    auth        - Auth token cache with TTL-based refresh
    resilience  - Retry with exponential backoff and jitter
    logging     - Structured JSON logging with context propagation
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization helpers, worker ids

Design Principles:
    - No dependencies on the Firebase client or the ingestion engine
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
