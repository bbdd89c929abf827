"""Sleep timer that pauses playback after a countdown."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from .types import SleepTimerState

logger = logging.getLogger(__name__)

MIN_DURATION_MS = 60_000
PRESET_MINUTES = (15, 30, 60, 120)
TICK_INTERVAL_SECONDS = 1.0


class MonotonicClock(Protocol):
    def now_ms(self) -> int: ...


class SystemMonotonicClock:
    """Milliseconds from time.monotonic, unaffected by wall-clock changes."""

    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)


@dataclass(frozen=True)
class DurationSpec:
    millis: int


@dataclass(frozen=True)
class PresetSpec:
    minutes: int


@dataclass(frozen=True)
class TargetTimeSpec:
    hour: int
    minute: int


type TimerSpec = DurationSpec | PresetSpec | TargetTimeSpec


def millis_until(hour: int, minute: int, now: datetime | None = None) -> int:
    """
    Milliseconds from now until the next occurrence of hour:minute.

    A target that is not strictly after the current time of day is taken to
    mean the same time on the next day, so the result is always positive.

    Args:
        hour: Target hour (0-23).
        minute: Target minute (0-59).
        now: Current local time (defaults to datetime.now()).

    Returns:
        Milliseconds until the target.
    """
    now = now or datetime.now()
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return int((target - now).total_seconds() * 1000)


def spec_to_millis(spec: TimerSpec, now: datetime | None = None) -> int:
    """Reduce any timer spec to a duration in milliseconds."""
    match spec:
        case DurationSpec(millis=millis):
            return millis
        case PresetSpec(minutes=minutes):
            return minutes * 60_000
        case TargetTimeSpec(hour=hour, minute=minute):
            return millis_until(hour, minute, now)


def format_remaining(millis: int) -> str:
    """Format a duration as H:MM:SS, or M:SS when under an hour."""
    total_seconds = max(0, millis) // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


class SleepScheduler:
    """
    Countdown timer that signals expiry.

    Expiry is computed from a monotonic deadline, not from accumulated
    ticks. Ticks only refresh the published remaining time.

    Attributes:
        clock: Monotonic time source.
        tick_interval: Seconds between state emissions.
        on_state_change: Called with every new SleepTimerState.
        on_expire: Called once the countdown reaches zero.
    """

    def __init__(
        self,
        on_state_change: Callable[[SleepTimerState], None] | None = None,
        on_expire: Callable[[], None] | None = None,
        clock: MonotonicClock | None = None,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.on_state_change = on_state_change
        self.on_expire = on_expire
        self.clock = clock or SystemMonotonicClock()
        self.tick_interval = tick_interval
        self._sleep = sleep
        self._state = SleepTimerState()
        self._task: asyncio.Task[None] | None = None
        self._generation = 0

    @property
    def state(self) -> SleepTimerState:
        return self._state

    def _publish(self, state: SleepTimerState) -> None:
        self._state = state
        if self.on_state_change:
            self.on_state_change(state)

    def start(self, duration_ms: int, preset_minutes: int | None = None) -> bool:
        """
        Start a countdown, replacing any running one.

        Must be called from the event loop thread.

        Args:
            duration_ms: Countdown length in milliseconds.
            preset_minutes: Preset the duration came from, if any.

        Returns:
            False (and nothing changes) if duration_ms is below one minute.
        """
        if duration_ms < MIN_DURATION_MS:
            logger.warning("Ignoring sleep timer shorter than one minute (%d ms)", duration_ms)
            return False

        self._stop_task()
        self._generation += 1
        deadline = self.clock.now_ms() + duration_ms
        self._publish(SleepTimerState(True, duration_ms, preset_minutes))
        self._task = asyncio.get_running_loop().create_task(
            self._run(deadline, self._generation, preset_minutes)
        )
        logger.info("Sleep timer started for %d ms", duration_ms)
        return True

    def cancel(self) -> None:
        """Stop the countdown and reset to inactive."""
        was_active = self._state.active
        self._stop_task()
        self._generation += 1
        self._publish(SleepTimerState())
        if was_active:
            logger.info("Sleep timer cancelled")

    def _stop_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, deadline: int, generation: int, preset_minutes: int | None) -> None:
        remaining = deadline - self.clock.now_ms()
        while remaining > 0:
            await self._sleep(min(self.tick_interval, remaining / 1000))
            if generation != self._generation:
                return

            remaining = deadline - self.clock.now_ms()
            if remaining > 0:
                self._publish(SleepTimerState(True, remaining, preset_minutes))

        if generation != self._generation:
            return

        # Reset before signaling so observers never see an expired-but-active timer
        self._task = None
        self._publish(SleepTimerState())
        logger.info("Sleep timer expired")
        if self.on_expire:
            self.on_expire()
