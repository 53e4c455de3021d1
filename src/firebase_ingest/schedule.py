"""
Schedule parsing and the single-worker schedule engine for pull mode.

Supported schedules (exactly one key):
    {"cron": "*/5 * * * * Europe/Paris"}   5-field, or 6-field with seconds first
    {"every": "1h30m"}                      fixed rate, first run almost immediately
    {"at": "2030-01-01T00:00:00Z"}          once, at an absolute time
    {"in": "10s"}                           once, after a delay

Durations are numbers of seconds or compact strings such as "1w2d3h4m5s",
"250ms" or "1.5h". Units are case-sensitive: "M" is a 30-day month, "m" a
minute, "y" a 365-day year.
"""

import asyncio
import inspect
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from core.errors import ConfigurationError
from core.logging import log_exception

logger = logging.getLogger(__name__)

SCHEDULE_TYPES = ("cron", "every", "at", "in")
INVALID_SCHEDULE_MESSAGE = (
    "Invalid config. schedule hash must contain exactly one of the following "
    "keys - cron, at, every or in"
)

# Delay before the first run of an "every" schedule
FIRST_IN_SECONDS = 0.01

_UNIT_SECONDS = {
    "y": 365 * 24 * 3600,
    "M": 30 * 24 * 3600,
    "w": 7 * 24 * 3600,
    "d": 24 * 3600,
    "h": 3600,
    "m": 60,
    "s": 1,
    "ms": 0.001,
}
_NUMBER = r"\d+(?:\.\d+)?"
_DURATION_UNIT = "ms|y|M|w|d|h|m|s"
_DURATION_PART = re.compile(rf"({_NUMBER})({_DURATION_UNIT})")
_DURATION_FULL = re.compile(rf"(?:{_NUMBER}(?:{_DURATION_UNIT}))+")
_PLAIN_NUMBER = re.compile(rf"{_NUMBER}")


def parse_duration(value: Any) -> float:
    """Parse a duration into seconds. Zero and negative durations are rejected."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if _PLAIN_NUMBER.fullmatch(text):
            seconds = float(text)
        elif _DURATION_FULL.fullmatch(text):
            seconds = sum(
                float(number) * _UNIT_SECONDS[unit]
                for number, unit in _DURATION_PART.findall(text)
            )
        else:
            raise ConfigurationError(f"Invalid duration: {value!r}")
    else:
        raise ConfigurationError(f"Invalid duration: {value!r}")

    if seconds <= 0:
        raise ConfigurationError(f"Duration must be positive, got {value!r}")
    return seconds


def _parse_timezone(token: str) -> tzinfo | None:
    if not any(c.isalpha() for c in token):
        return None
    try:
        return ZoneInfo(token)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def parse_cron(value: Any) -> tuple[str, tzinfo]:
    """Split a cron string into a croniter expression and its timezone.

    Six fields mean seconds come first; croniter expects them last, so the
    seconds field is moved to the end.
    """
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"Invalid cron expression: {value!r}")

    fields = value.split()
    tz: tzinfo = UTC
    if len(fields) in (6, 7):
        zone = _parse_timezone(fields[-1])
        if zone is not None:
            tz = zone
            fields = fields[:-1]

    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    elif len(fields) != 5:
        raise ConfigurationError(
            f"Invalid cron expression: {value!r} (expected 5 or 6 fields "
            "with an optional trailing timezone)"
        )

    expression = " ".join(fields)
    try:
        croniter(expression, datetime.now(tz))
    except (ValueError, KeyError) as e:
        raise ConfigurationError(f"Invalid cron expression: {value!r}: {e}", cause=e) from e

    return expression, tz


def parse_at(value: Any) -> datetime:
    """Parse an absolute time. Naive timestamps are taken as UTC."""
    if isinstance(value, datetime):
        when = value
    elif isinstance(value, str):
        try:
            when = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise ConfigurationError(f"Invalid timestamp: {value!r}", cause=e) from e
    else:
        raise ConfigurationError(f"Invalid timestamp: {value!r}")

    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return when


@dataclass(frozen=True)
class ScheduleSpec:
    """A validated schedule. Exactly one of the kind-specific fields is set."""

    kind: str
    raw: Any
    seconds: float | None = None
    cron_expression: str | None = None
    timezone: tzinfo | None = None
    run_at: datetime | None = None

    @classmethod
    def parse(cls, raw: Any) -> "ScheduleSpec":
        if isinstance(raw, ScheduleSpec):
            return raw
        if not isinstance(raw, dict) or len(raw) != 1:
            raise ConfigurationError(INVALID_SCHEDULE_MESSAGE)

        kind, value = next(iter(raw.items()))
        if kind not in SCHEDULE_TYPES:
            raise ConfigurationError(INVALID_SCHEDULE_MESSAGE)

        if kind in ("every", "in"):
            return cls(kind=kind, raw=value, seconds=parse_duration(value))
        if kind == "cron":
            expression, tz = parse_cron(value)
            return cls(kind=kind, raw=value, cron_expression=expression, timezone=tz)
        return cls(kind=kind, raw=value, run_at=parse_at(value))

    @property
    def is_recurring(self) -> bool:
        return self.kind in ("cron", "every")

    def next_cron_time(self, after: datetime) -> datetime:
        it = croniter(self.cron_expression, after.astimezone(self.timezone))
        return it.get_next(datetime)

    def describe(self) -> dict[str, Any]:
        return {self.kind: self.raw}


ScheduleCallback = Callable[[], Any]


class ScheduleEngine:
    """
    Runs a callback on a ScheduleSpec from a single worker task.

    Invocations never overlap. ``stop()`` halts future invocations and lets
    an in-flight one finish. For one-shot schedules the worker idles after
    its run until stopped, so ``join()`` always returns only after ``stop()``.

    Usage:
        engine = ScheduleEngine()
        engine.start({"every": "30s"}, coordinator.run_once)
        await engine.join()
    """

    def __init__(self):
        self.spec: ScheduleSpec | None = None
        self.trigger_count = 0
        self._callback: ScheduleCallback | None = None
        self._task: asyncio.Task | None = None
        self._stopped: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, spec: ScheduleSpec | dict, callback: ScheduleCallback) -> None:
        """Validate ``spec`` and launch the worker. Raises ConfigurationError."""
        if self._task is not None:
            raise RuntimeError("ScheduleEngine already started")

        self.spec = ScheduleSpec.parse(spec)
        self._callback = callback
        self._stopped = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"schedule-{self.spec.kind}")

        logger.info(
            "Schedule started",
            extra={"schedule_type": self.spec.kind, "schedule": str(self.spec.raw)},
        )

    def stop(self) -> None:
        if self._stopped is None or self._stopped.is_set():
            return
        self._stopped.set()
        logger.info(
            "Schedule stopped",
            extra={"schedule_type": self.spec.kind, "cycle": self.trigger_count},
        )

    async def join(self) -> None:
        """Block until ``stop()`` has been called and the worker has exited."""
        if self._task is None:
            raise RuntimeError("ScheduleEngine not started")
        await self._stopped.wait()
        await self._task

    async def _wait(self, delay: float) -> bool:
        """Sleep up to ``delay`` seconds. Returns True if stopped meanwhile."""
        if delay > 0:
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        return self._stopped.is_set()

    async def _invoke(self) -> None:
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_exception(
                logger,
                e,
                "Scheduled run failed",
                schedule_type=self.spec.kind,
                cycle=self.trigger_count + 1,
            )
        finally:
            self.trigger_count += 1

    async def _run(self) -> None:
        kind = self.spec.kind
        if kind == "every":
            await self._run_every()
        elif kind == "cron":
            await self._run_cron()
        else:
            if kind == "in":
                delay = self.spec.seconds
            else:
                # A time already in the past fires immediately, once
                delay = max(0.0, (self.spec.run_at - datetime.now(UTC)).total_seconds())
            if not await self._wait(delay):
                await self._invoke()
            await self._stopped.wait()

    async def _run_every(self) -> None:
        period = self.spec.seconds
        next_run = time.monotonic() + FIRST_IN_SECONDS
        while not await self._wait(next_run - time.monotonic()):
            await self._invoke()
            # Fixed rate; an overrunning invocation is followed right away
            next_run = max(next_run + period, time.monotonic())

    async def _run_cron(self) -> None:
        last_fire: datetime | None = None
        while True:
            now = datetime.now(UTC)
            # Timers may wake marginally early; never fire the same instant twice
            fire_at = self.spec.next_cron_time(max(now, last_fire) if last_fire else now)
            last_fire = fire_at
            if await self._wait((fire_at - now).total_seconds()):
                return
            await self._invoke()
