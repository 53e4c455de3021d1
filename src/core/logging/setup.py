"""Logging setup: console handler plus a rotating, self-archiving JSON file."""

import logging
import secrets
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import TextIO

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# HTTP client and event loop chatter, capped at WARNING
NOISY_LOGGERS = ("aiohttp", "aiohttp.access", "aiohttp.client", "asyncio")

PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    Rotates on a timer and moves rotated files into ``archive_dir``.

        logs/firebase/2026-01-05/firebase_input_0105_1430_calm-fox.log
        logs/archive/firebase/2026-01-05/firebase_input_0105_1430_calm-fox.log.2026-01-05
    """

    def __init__(self, filename, archive_dir: Path | None = None, **kwargs):
        super().__init__(filename, **kwargs)
        self.archive_dir = Path(archive_dir) if archive_dir else Path(self.baseFilename).parent / "archive"
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()

        current = Path(self.baseFilename)
        for rotated in current.parent.glob(f"{current.name}.*"):
            try:
                shutil.move(str(rotated), str(self.archive_dir / rotated.name))
            except OSError as e:
                # Logging from inside the handler would recurse
                print(f"Warning: Failed to archive {rotated}: {e}", file=sys.stderr)


def get_log_file_path(
    log_dir: Path,
    domain: str | None = None,
    stage: str | None = None,
    instance_id: str | None = None,
) -> Path:
    """
    Path for a new log file: ``{log_dir}/[{domain}/]{YYYY-MM-DD}/{prefix}_{MMDD}_{HHMM}[_{instance}].log``.

    The prefix is ``{domain}_{stage}``, whichever of them is set, or
    ``firebase`` when neither is.
    """
    now = datetime.now()
    prefix = "_".join(part for part in (domain, stage) if part) or "firebase"
    stem = f"{prefix}_{now:%m%d}_{now:%H%M}"
    if instance_id:
        stem = f"{stem}_{instance_id}"

    folder = log_dir / domain if domain else log_dir
    return folder / f"{now:%Y-%m-%d}" / f"{stem}.log"


def _file_handler(
    log_dir: Path,
    log_file: Path,
    json_format: bool,
    level: int,
    rotation_when: str,
    backup_count: int,
) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        archive_dir = log_dir / "archive" / log_file.relative_to(log_dir).parent
    except ValueError:
        archive_dir = log_file.parent / "archive"

    handler = ArchivingTimedRotatingFileHandler(
        log_file,
        archive_dir=archive_dir,
        when=rotation_when,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "firebase_ingest",
    stage: str | None = None,
    domain: str | None = "firebase",
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = "midnight",
    backup_count: int = 7,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    log_to_stdout: bool = False,
    console_stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the root logger and return the logger called ``name``.

    Console output is human readable and goes to ``console_stream``
    (default stdout); pass sys.stderr when events are written to stdout.
    Unless ``log_to_stdout`` is set, a file handler also writes JSON lines
    (or plain text with ``json_format=False``) under ``log_dir``. With
    ``log_to_stdout`` there is no file and the console logs at
    ``file_level``.

    ``worker_id`` and ``stage`` are added to the log context and used in
    the file name.
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    set_log_context(worker_id=worker_id or None, stage=stage or None)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(console_stream or sys.stdout)
    console.setFormatter(ConsoleFormatter())
    console.setLevel(file_level if log_to_stdout else console_level)

    log_file = None
    if not log_to_stdout:
        log_file = get_log_file_path(log_dir, domain=domain, stage=stage, instance_id=worker_id)
        root.addHandler(
            _file_handler(log_dir, log_file, json_format, file_level, rotation_when, backup_count)
        )
    root.addHandler(console)

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging initialized: stdout-only mode")
    else:
        logger.debug(
            "Logging initialized: file=%s, json=%s",
            log_file,
            json_format,
            extra={"output_path": str(log_file)},
        )
    return logger


def generate_cycle_id() -> str:
    """Cycle identifier ``c-YYYYMMDD-HHMMSS-xxxx`` with a random hex suffix."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"
