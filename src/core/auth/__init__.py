"""Authentication helpers: TTL-based auth token cache."""

from core.auth.token_cache import DEFAULT_AUTH_TTL_SECONDS, CachedToken, TokenCache

__all__ = ["TokenCache", "CachedToken", "DEFAULT_AUTH_TTL_SECONDS"]
