"""
Thread-safe token cache with expiration tracking.

This module provides in-memory caching of authentication tokens with automatic
expiration handling. Tokens are cached per resource URL and considered stale
once they are older than the cache's TTL, which forces the owner to derive a
fresh one on the next request (the periodic refresh cycle).

Thread Safety:
    All cache operations are protected by a lock so streaming connections and
    the shutdown path can touch the cache concurrently.

Example:
    >>> cache = TokenCache(ttl_seconds=82800)
    >>> cache.set("https://demo.firebaseio.com", "secret-value")
    >>> token = cache.get("https://demo.firebaseio.com")
    >>> if token is None:
    ...     # Token expired or invalidated, derive a new one
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# Refresh the auth token every 23 hours by default
DEFAULT_AUTH_TTL_SECONDS = 82800


@dataclass
class CachedToken:
    """
    Token with acquisition timestamp for expiration tracking.

    Attributes:
        value: The auth token string
        acquired_at: UTC timestamp when token was cached
    """

    value: str
    acquired_at: datetime

    def is_valid(self, ttl_seconds: float) -> bool:
        """Return True while the token is younger than ``ttl_seconds``."""
        age = datetime.now(timezone.utc) - self.acquired_at
        return age < timedelta(seconds=ttl_seconds)


class TokenCache:
    """
    Thread-safe cache for authentication tokens.

    Maintains an in-memory cache of tokens keyed by resource URL. Each token
    tracks its acquisition time and is considered invalid after ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_AUTH_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._tokens: dict[str, CachedToken] = {}
        self._lock = threading.Lock()

    def get(self, resource: str) -> str | None:
        """Get cached token if still valid, None if expired or not found."""
        with self._lock:
            cached = self._tokens.get(resource)
            if cached and cached.is_valid(self.ttl_seconds):
                return cached.value
            return None

    def set(self, resource: str, token: str) -> None:
        """Cache a token with the current timestamp."""
        with self._lock:
            self._tokens[resource] = CachedToken(
                value=token, acquired_at=datetime.now(timezone.utc)
            )

    def clear(self, resource: str | None = None) -> None:
        """Clear one cached token, or all of them when ``resource`` is None."""
        with self._lock:
            if resource:
                self._tokens.pop(resource, None)
            else:
                self._tokens.clear()

    def get_age(self, resource: str) -> timedelta | None:
        """Get age of cached token for diagnostics."""
        with self._lock:
            cached = self._tokens.get(resource)
            if cached:
                return datetime.now(timezone.utc) - cached.acquired_at
            return None


__all__ = ["TokenCache", "CachedToken", "DEFAULT_AUTH_TTL_SECONDS"]
