"""
Bounded retry for coroutines, driven by the error hierarchy.

- Transient errors (timeouts, 5xx, 429, dropped connections): exponential
  backoff with equal jitter
- Auth errors (401, revoked auth): ``on_auth_error`` runs so the cached
  auth value is re-derived, then the call is retried
- Permanent errors (404, 403, malformed payloads): raised immediately

The number of attempts is always bounded by ``RetryConfig.max_attempts``.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import wraps

from core.errors.exceptions import (
    PipelineError,
    ThrottlingError,
    classify_exception,
    wrap_exception,
)
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

RETRYABLE_CATEGORIES = (ErrorCategory.TRANSIENT, ErrorCategory.AUTH, ErrorCategory.UNKNOWN)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    ``always_retry`` and ``never_retry`` hold exception types that override
    classification; they are matched against the error and its cause.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    respect_permanent: bool = True
    respect_retry_after: bool = True
    always_retry: set[type[BaseException]] = field(default_factory=set)
    never_retry: set[type[BaseException]] = field(default_factory=set)

    def __post_init__(self):
        # Values may arrive as strings from YAML or env vars
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)

    def get_delay(self, attempt: int, error: Exception | None = None) -> float:
        """Seconds to wait before retry number ``attempt + 1``.

        A server-provided Retry-After wins when present. Otherwise half of
        the exponential delay is fixed and half is random.
        """
        if self.respect_retry_after and isinstance(error, ThrottlingError) and error.retry_after:
            return min(error.retry_after, self.max_delay)

        backoff = self.base_delay * (self.exponential_base**attempt)
        delay = backoff / 2 + random.uniform(0, backoff / 2)
        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        if attempt >= self.max_attempts - 1:
            return False

        candidates = [error]
        if isinstance(error, PipelineError) and error.cause is not None:
            candidates.append(error.cause)

        if any(isinstance(c, tuple(self.never_retry)) for c in candidates):
            return False
        if any(isinstance(c, tuple(self.always_retry)) for c in candidates):
            return True

        category = error.category if isinstance(error, PipelineError) else classify_exception(error)
        if self.respect_permanent and category == ErrorCategory.PERMANENT:
            return False
        return category in RETRYABLE_CATEGORIES


DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)


def _category_name(error: Exception) -> str:
    category = error.category if isinstance(error, PipelineError) else classify_exception(error)
    return category.value


async def _refresh_auth(
    on_auth_error: Callable[[], None] | Callable[[], Awaitable[None]],
) -> None:
    result = on_auth_error()
    if asyncio.iscoroutine(result):
        await result


def with_retry_async(
    config: RetryConfig | None = None,
    on_auth_error: Callable[[], None] | Callable[[], Awaitable[None]] | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    wrap_errors: bool = True,
):
    """
    Decorator for retrying async functions with backoff.

    Args:
        config: Retry configuration (defaults to DEFAULT_RETRY)
        on_auth_error: Called when an auth error is seen, before the retry
            decision (e.g. invalidate the cached auth token)
        on_retry: Called before each retry with (error, attempt, delay)
        wrap_errors: Wrap unclassified exceptions in a PipelineError subclass

    Usage:
        fetch = with_retry_async(RetryConfig(max_attempts=4),
                                 on_auth_error=client.invalidate_auth)(client._fetch_once)
    """
    if config is None:
        config = DEFAULT_RETRY

    def decorator(func: Callable):
        name = getattr(func, "__name__", "operation")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    wrapped = e
                    if wrap_errors and not isinstance(e, PipelineError):
                        wrapped = wrap_exception(e)
                    category = _category_name(wrapped)

                    if isinstance(wrapped, PipelineError) and wrapped.should_refresh_auth:
                        logger.info(
                            "Auth error for %s, refreshing credentials",
                            name,
                            extra={"operation": name, "error_category": category},
                        )
                        if on_auth_error:
                            await _refresh_auth(on_auth_error)

                    if not config.should_retry(wrapped, attempt):
                        logger.warning(
                            "Giving up on %s after %d attempt(s): %s",
                            name,
                            attempt + 1,
                            str(e)[:200],
                            extra={
                                "operation": name,
                                "attempt": attempt + 1,
                                "max_attempts": config.max_attempts,
                                "error_type": type(wrapped).__name__,
                                "error_category": category,
                                "error_message": str(e)[:200],
                            },
                        )
                        if wrapped is not e:
                            raise wrapped from e
                        raise

                    delay = config.get_delay(attempt, wrapped)
                    server_delay = (
                        config.respect_retry_after
                        and isinstance(wrapped, ThrottlingError)
                        and wrapped.retry_after is not None
                    )
                    logger.warning(
                        "Retryable error for %s, retrying in %.2fs",
                        name,
                        delay,
                        extra={
                            "operation": name,
                            "attempt": attempt + 1,
                            "max_attempts": config.max_attempts,
                            "error_category": category,
                            "delay_seconds": round(delay, 2),
                            "delay_source": "server" if server_delay else "exponential_backoff",
                            "error_message": str(e)[:200],
                        },
                    )

                    if on_retry:
                        try:
                            on_retry(wrapped, attempt, delay)
                        except Exception as cb_err:
                            logger.warning(
                                "Error in on_retry callback for %s: %s",
                                name,
                                str(cb_err)[:100],
                                extra={"operation": name},
                            )

                    await asyncio.sleep(delay)
                    continue

                if attempt > 0:
                    logger.info(
                        "Retry succeeded for %s after %d attempts",
                        name,
                        attempt + 1,
                        extra={
                            "operation": name,
                            "attempt": attempt + 1,
                            "total_attempts": config.max_attempts,
                        },
                    )
                return result

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
]
