"""Helpers for logging with structured extras."""

import logging
from typing import Any

# Attributes every LogRecord already has; passing them in ``extra`` raises
_RESERVED_LOG_KEYS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

MAX_ERROR_MESSAGE = 500


def _safe_extra(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k not in _RESERVED_LOG_KEYS}


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log ``msg`` with keyword arguments as structured extras.

    Reserved LogRecord names (``name``, ``msg``...) are dropped. ``exc_info``
    is passed through to the logger.

    Example:
        log_with_context(
            logger, logging.INFO, "Query complete",
            query_name=spec.name,
            runtime_seconds=elapsed,
        )
    """
    exc_info = kwargs.pop("exc_info", None)
    logger.log(level, msg, exc_info=exc_info, extra=_safe_extra(kwargs))


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log an exception with error_type, error_message and, for PipelineErrors,
    error_category. Messages over 500 characters are truncated.

    Example:
        try:
            await client.fetch(spec.path, spec)
        except Exception as e:
            log_exception(logger, e, "Query failed", query_name=spec.name)
    """
    category = getattr(exc, "category", None)
    if category is not None and "error_category" not in kwargs:
        kwargs["error_category"] = getattr(category, "value", str(category))

    text = str(exc)
    if len(text) > MAX_ERROR_MESSAGE:
        text = text[:MAX_ERROR_MESSAGE] + "..."
    kwargs["error_message"] = text
    kwargs.setdefault("error_type", type(exc).__name__)

    logger.log(
        level,
        msg,
        exc_info=exc if include_traceback else None,
        extra=_safe_extra(kwargs),
    )


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    failed: int,
    duration_seconds: float | None = None,
) -> str:
    """
    One-line summary of a poll cycle.

    Example:
        >>> format_cycle_output(3, 2, 1)
        'Cycle 3: processed=3, succeeded=2, failed=1'
        >>> format_cycle_output(3, 2, 0, 0.42)
        'Cycle 3: processed=2, succeeded=2, failed=0 | 0.42s'
    """
    line = f"Cycle {cycle_count}: processed={succeeded + failed}, succeeded={succeeded}, failed={failed}"
    if duration_seconds is not None:
        line += f" | {duration_seconds:.2f}s"
    return line


_BANNER_LABELS = {
    "worker_id": "Worker",
    "mode": "Mode",
    "url": "Database",
    "schedule": "Schedule",
    "queries": "Queries",
    "output": "Output",
}


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """Log a framed banner with ``version`` and any non-empty fields of _BANNER_LABELS."""
    rule = "=" * 50
    lines = ["", rule, worker_name]
    if kwargs.get("version"):
        lines.append(f"Version: {kwargs['version']}")
    lines.append(rule)
    lines.extend(
        f"{label + ':':<14}{kwargs[key]}" for key, label in _BANNER_LABELS.items() if kwargs.get(key)
    )
    lines.extend([rule, ""])
    logger.info("\n".join(lines))
