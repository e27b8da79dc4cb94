"""Periodic task scheduling on asyncio.

The Scheduler is the mechanism (one sequential asyncio task per
registration); SchedulePolicy is the plain-data policy saying which
cadences and times of day to use.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .clock import utcnow

logger = logging.getLogger(__name__)

TaskFunc = Callable[[], Awaitable[Any]]


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parse 'HH:MM' into (hour, minute).

    Raises:
        ValueError: If the value is not a valid time of day.
    """
    hour_str, sep, minute_str = value.strip().partition(":")
    if not sep or not hour_str.isdigit() or not minute_str.isdigit():
        raise ValueError(f"time of day {value!r} must be HH:MM")
    hour, minute = int(hour_str), int(minute_str)
    if hour > 23 or minute > 59:
        raise ValueError(f"time of day {value!r} is out of range")
    return hour, minute


def seconds_until(time_of_day: str, now: datetime, tz: str = "UTC") -> float:
    """Seconds from ``now`` until the next occurrence of ``time_of_day`` in ``tz``.

    An occurrence exactly at ``now`` counts as the next one.
    """
    hour, minute = parse_time_of_day(time_of_day)
    local = now.astimezone(ZoneInfo(tz))
    target = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target < local:
        target = (target + timedelta(days=1)).replace(hour=hour, minute=minute)
    return (target - local).total_seconds()


@dataclass
class SchedulePolicy:
    """Which cadences and times the engine's periodic work runs at."""

    outreach_interval_seconds: float = 30 * 60
    health_interval_seconds: float = 10 * 60
    heartbeat_interval_seconds: float = 30
    phase_check_interval_seconds: float = 60 * 60
    discovery_times: List[str] = field(default_factory=lambda: ["09:00", "13:00"])
    discovery_timezone: str = "America/Chicago"

    @classmethod
    def from_config(
        cls, config: Any, discovery_times: List[str], discovery_timezone: str
    ) -> "SchedulePolicy":
        return cls(
            outreach_interval_seconds=config.OUTREACH_INTERVAL_MINUTES * 60,
            health_interval_seconds=config.HEALTH_CHECK_INTERVAL_MINUTES * 60,
            heartbeat_interval_seconds=config.HEARTBEAT_INTERVAL_SECONDS,
            phase_check_interval_seconds=config.PHASE_CHECK_INTERVAL_MINUTES * 60,
            discovery_times=list(discovery_times),
            discovery_timezone=discovery_timezone,
        )


@dataclass
class Registration:
    """A task registered with the Scheduler and its run bookkeeping."""

    name: str
    task: TaskFunc
    interval_seconds: Optional[float] = None
    time_of_day: Optional[str] = None
    timezone: str = "UTC"
    run_immediately: bool = False
    runs: int = 0
    failures: int = 0
    last_run_at: Optional[datetime] = None

    @property
    def kind(self) -> str:
        return "interval" if self.interval_seconds is not None else "daily"


class Scheduler:
    """Runs registered coroutine functions on intervals or at daily times.

    Each registration runs in its own loop, so a slow run delays that
    registration's next run instead of overlapping it. Exceptions raised by a
    task are logged and the loop carries on.

    Example:
        >>> scheduler = Scheduler()
        >>> scheduler.register_interval(1800, outreach.tick_now, name="outreach")
        >>> scheduler.register_daily_at("09:00", discovery_job, tz="America/Chicago")
        >>> await scheduler.start()
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._registrations: Dict[str, Registration] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def registrations(self) -> Dict[str, Registration]:
        return dict(self._registrations)

    def _add(self, registration: Registration) -> Registration:
        if registration.name in self._registrations:
            raise ValueError(f"A task named {registration.name!r} is already registered")
        self._registrations[registration.name] = registration
        if self._running:
            self._spawn(registration)
        return registration

    def register_interval(
        self,
        seconds: float,
        task: TaskFunc,
        name: Optional[str] = None,
        run_immediately: bool = False,
    ) -> Registration:
        """Run ``task`` every ``seconds`` seconds."""
        if seconds <= 0:
            raise ValueError("interval must be positive")
        return self._add(
            Registration(
                name=name or getattr(task, "__name__", "task"),
                task=task,
                interval_seconds=seconds,
                run_immediately=run_immediately,
            )
        )

    def register_daily_at(
        self,
        time_of_day: str,
        task: TaskFunc,
        name: Optional[str] = None,
        tz: str = "UTC",
    ) -> Registration:
        """Run ``task`` every day at ``time_of_day`` (HH:MM) in timezone ``tz``."""
        parse_time_of_day(time_of_day)
        ZoneInfo(tz)
        return self._add(
            Registration(
                name=name or f"{getattr(task, '__name__', 'task')}@{time_of_day}",
                task=task,
                time_of_day=time_of_day,
                timezone=tz,
            )
        )

    async def unregister(self, name: str) -> None:
        """Remove a registration, cancelling its loop if running."""
        self._registrations.pop(name, None)
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    def _spawn(self, registration: Registration) -> None:
        loop_func = self._run_interval if registration.kind == "interval" else self._run_daily
        self._tasks[registration.name] = asyncio.create_task(
            loop_func(registration), name=f"scheduler:{registration.name}"
        )

    async def start(self) -> None:
        """Start one loop per registration."""
        if self._running:
            return
        self._running = True
        for registration in self._registrations.values():
            self._spawn(registration)
        logger.info("Scheduler started with %d tasks", len(self._registrations))

    async def stop(self) -> None:
        """Cancel all loops and wait for them to finish."""
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped (%d tasks cancelled)", len(tasks))

    async def run_now(self, name: str) -> None:
        """Run a registered task once, outside its schedule."""
        await self._invoke(self._registrations[name])

    async def _invoke(self, registration: Registration) -> None:
        registration.last_run_at = self._clock()
        registration.runs += 1
        try:
            await registration.task()
        except asyncio.CancelledError:
            raise
        except Exception:
            registration.failures += 1
            logger.exception("Scheduled task %s failed", registration.name)

    async def _run_interval(self, registration: Registration) -> None:
        if registration.run_immediately:
            await self._invoke(registration)
        while self._running:
            await self._sleep(registration.interval_seconds)
            await self._invoke(registration)

    async def _run_daily(self, registration: Registration) -> None:
        while self._running:
            delay = seconds_until(
                registration.time_of_day, self._clock(), registration.timezone
            )
            await self._sleep(max(delay, 1.0))
            await self._invoke(registration)
            # Step past the scheduled minute before computing the next delay
            await self._sleep(60)
