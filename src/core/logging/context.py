"""Context variables for structured logging.

Values set here are picked up by JSONFormatter and ConsoleFormatter on every
record. Being ContextVars, they are isolated per asyncio task, so concurrent
subscriptions can each carry their own query_name.
"""

from contextvars import ContextVar, Token
from typing import Dict, Optional

_VARS: Dict[str, ContextVar[str]] = {
    "cycle_id": ContextVar("cycle_id", default=""),
    "stage": ContextVar("stage_name", default=""),
    "worker_id": ContextVar("worker_id", default=""),
    "mode": ContextVar("mode", default=""),
    "query_name": ContextVar("query_name", default=""),
}


def _push(**values: Optional[str]) -> Dict[str, Token]:
    tokens = {}
    for key, value in values.items():
        if key not in _VARS:
            raise KeyError(f"Unknown log context field: {key}")
        if value is not None:
            tokens[key] = _VARS[key].set(value)
    return tokens


def _pop(tokens: Dict[str, Token]) -> None:
    for key, token in tokens.items():
        _VARS[key].reset(token)


def set_log_context(
    cycle_id: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    mode: Optional[str] = None,
    query_name: Optional[str] = None,
) -> None:
    _push(
        cycle_id=cycle_id,
        stage=stage,
        worker_id=worker_id,
        mode=mode,
        query_name=query_name,
    )


def get_log_context() -> Dict[str, str]:
    return {key: var.get() for key, var in _VARS.items()}


def clear_log_context() -> None:
    for var in _VARS.values():
        var.set("")
