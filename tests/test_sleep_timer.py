"""Tests for the sleep timer."""

import asyncio
from datetime import datetime

import pytest

from lofiradio.sleep_timer import (
    MIN_DURATION_MS,
    DurationSpec,
    PresetSpec,
    SleepScheduler,
    TargetTimeSpec,
    format_remaining,
    millis_until,
    spec_to_millis,
)
from lofiradio.types import SleepTimerState


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self) -> None:
        self.now = 0

    def now_ms(self) -> int:
        return self.now


def fake_sleep_for(clock: FakeClock):
    async def fake_sleep(seconds: float) -> None:
        clock.now += int(seconds * 1000)
        await asyncio.sleep(0)

    return fake_sleep


def make_scheduler() -> tuple[SleepScheduler, FakeClock, list[SleepTimerState], asyncio.Event]:
    clock = FakeClock()
    states: list[SleepTimerState] = []
    expired = asyncio.Event()
    scheduler = SleepScheduler(
        on_state_change=states.append,
        on_expire=expired.set,
        clock=clock,
        sleep=fake_sleep_for(clock),
    )
    return scheduler, clock, states, expired


async def yield_to_loop(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


class TestMillisUntil:
    """Test target-time scheduling."""

    def test_later_today(self):
        """Test a target later on the same day."""
        now = datetime(2024, 5, 1, 8, 0)
        assert millis_until(9, 30, now) == 90 * 60_000

    def test_wraps_to_next_day(self):
        """Test that 00:10 seen from 23:50 is twenty minutes away."""
        now = datetime(2024, 5, 1, 23, 50)
        assert millis_until(0, 10, now) == 20 * 60_000

    def test_same_time_is_tomorrow(self):
        """Test that the current time of day means the next day, never now."""
        now = datetime(2024, 5, 1, 22, 15)
        assert millis_until(22, 15, now) == 24 * 60 * 60_000

    def test_seconds_are_counted(self):
        """Test that seconds already elapsed in the minute are subtracted."""
        now = datetime(2024, 5, 1, 22, 14, 30)
        assert millis_until(22, 15, now) == 30_000

    def test_never_negative(self):
        """Test every minute of the day from an arbitrary time."""
        now = datetime(2024, 5, 1, 13, 37, 12)
        for hour in range(24):
            for minute in range(0, 60, 7):
                assert millis_until(hour, minute, now) > 0


def test_spec_to_millis() -> None:
    """Test reducing every timer spec to a duration."""
    now = datetime(2024, 5, 1, 23, 50)
    assert spec_to_millis(DurationSpec(90_000)) == 90_000
    assert spec_to_millis(PresetSpec(15)) == 15 * 60_000
    assert spec_to_millis(TargetTimeSpec(0, 10), now) == 20 * 60_000


def test_format_remaining() -> None:
    """Test formatting of remaining time."""
    assert format_remaining(0) == "0:00"
    assert format_remaining(59_999) == "0:59"
    assert format_remaining(15 * 60_000) == "15:00"
    assert format_remaining(3_661_000) == "1:01:01"
    assert format_remaining(-5) == "0:00"


@pytest.mark.asyncio
async def test_start_below_minimum_is_noop() -> None:
    """Test that a timer shorter than a minute is rejected."""
    scheduler, _, states, _ = make_scheduler()

    assert scheduler.start(30_000) is False

    assert scheduler.state == SleepTimerState()
    assert states == []


@pytest.mark.asyncio
async def test_countdown_until_expiry() -> None:
    """Test that remaining time strictly decreases and then resets."""
    scheduler, _, states, expired = make_scheduler()
    state_at_expiry: list[SleepTimerState] = []
    scheduler.on_expire = lambda: (state_at_expiry.append(scheduler.state), expired.set())

    assert scheduler.start(MIN_DURATION_MS) is True
    assert scheduler.state.active is True
    assert scheduler.state.remaining_ms == MIN_DURATION_MS

    await asyncio.wait_for(expired.wait(), timeout=5)

    active = [s.remaining_ms for s in states if s.active]
    assert active[0] == MIN_DURATION_MS
    assert len(active) > 2
    assert all(a > b for a, b in zip(active, active[1:], strict=False))
    assert states[-1] == SleepTimerState()
    assert state_at_expiry == [SleepTimerState()]


@pytest.mark.asyncio
async def test_preset_recorded() -> None:
    """Test that the preset is carried in the published state."""
    scheduler, _, _, _ = make_scheduler()

    scheduler.start(15 * 60_000, preset_minutes=15)

    assert scheduler.state.preset_minutes == 15
    scheduler.cancel()


@pytest.mark.asyncio
async def test_cancel_stops_countdown() -> None:
    """Test that cancel resets state and expiry never fires."""
    scheduler, _, states, expired = make_scheduler()

    scheduler.start(MIN_DURATION_MS)
    await yield_to_loop(3)
    scheduler.cancel()
    ticks_at_cancel = len(states)
    await yield_to_loop(200)

    assert scheduler.state == SleepTimerState()
    assert len(states) == ticks_at_cancel
    assert not expired.is_set()


@pytest.mark.asyncio
async def test_cancel_wins_over_simultaneous_expiry() -> None:
    """Test that a cancel arriving after the deadline but before the tick wins."""
    scheduler, clock, _, expired = make_scheduler()

    scheduler.start(MIN_DURATION_MS)
    await yield_to_loop(1)
    clock.now += 10 * MIN_DURATION_MS
    scheduler.cancel()
    await yield_to_loop(10)

    assert not expired.is_set()
    assert scheduler.state.active is False


@pytest.mark.asyncio
async def test_expiry_follows_deadline_not_ticks() -> None:
    """Test that a clock jump ends the countdown at the next tick."""
    clock = FakeClock()
    expired = asyncio.Event()
    slept: list[float] = []

    async def recording_sleep(seconds: float) -> None:
        slept.append(seconds)
        clock.now += 5 * 60_000
        await asyncio.sleep(0)

    scheduler = SleepScheduler(on_expire=expired.set, clock=clock, sleep=recording_sleep)
    scheduler.start(10 * 60_000)

    await asyncio.wait_for(expired.wait(), timeout=5)

    assert len(slept) == 2


@pytest.mark.asyncio
async def test_restart_replaces_running_timer() -> None:
    """Test that starting again cancels the previous countdown."""
    scheduler, _, _, _ = make_scheduler()
    expirations: list[int] = []
    done = asyncio.Event()

    def on_expire() -> None:
        expirations.append(1)
        done.set()

    scheduler.on_expire = on_expire
    scheduler.start(5 * 60_000)
    scheduler.start(2 * 60_000)
    assert scheduler.state.remaining_ms == 2 * 60_000

    await asyncio.wait_for(done.wait(), timeout=5)
    await yield_to_loop(400)

    assert expirations == [1]
