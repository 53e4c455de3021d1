"""
Structured logging for firebase_ingest.

JSON file logs and a readable console, with cycle, mode and query context
carried through asyncio tasks by context variables.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.context_managers import LogContext
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    generate_cycle_id,
    get_log_file_path,
    setup_logging,
)
from core.logging.utilities import (
    format_cycle_output,
    log_exception,
    log_startup_banner,
    log_with_context,
)

__all__ = [
    "setup_logging",
    "generate_cycle_id",
    "get_log_file_path",
    "JSONFormatter",
    "ConsoleFormatter",
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "LogContext",
    "log_with_context",
    "log_exception",
    "format_cycle_output",
    "log_startup_banner",
]
