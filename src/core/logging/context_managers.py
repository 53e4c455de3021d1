"""Context managers for structured logging."""

from typing import Dict, Optional

from core.logging.context import _pop, _push


class LogContext:
    """
    Temporarily override log context fields; None leaves a field untouched.

    Usage:
        with LogContext(stage="poll", cycle_id=cycle_id):
            # All logs in this block carry stage and cycle_id
            await coordinator.run_once()

    On exit each field is reset to exactly what it was on entry, even if the
    block raised.
    """

    def __init__(self, **fields: Optional[str]):
        self.fields = fields
        self._tokens: Dict = {}

    def __enter__(self) -> "LogContext":
        self._tokens = _push(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _pop(self._tokens)
        self._tokens = {}
        return False
