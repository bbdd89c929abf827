"""Command-line interface for lofiradio."""

import argparse
import asyncio
import logging
import pathlib
from concurrent.futures import ThreadPoolExecutor

from .backend import InvidiousBackend
from .catalog import CatalogService
from .config import Settings, load_settings
from .player import MpvEngine
from .resolver import ResolutionService
from .session import SessionOrchestrator
from .sleep_timer import (
    PRESET_MINUTES,
    DurationSpec,
    PresetSpec,
    TargetTimeSpec,
    TimerSpec,
    format_remaining,
)
from .types import (
    Buffering,
    CatalogError,
    Empty,
    Idle,
    Loading,
    Paused,
    PlaybackError,
    Playing,
    Ready,
    Resolving,
    SessionState,
    StreamDescriptor,
)

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False, log_file: str | None = "lofiradio.log") -> None:
    """
    Configure logging for the application.

    Args:
        debug: Enable debug level logging if True.
        log_file: Also log to this file (None logs to the console only).
    """
    level = logging.DEBUG if debug else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def parse_clock_time(value: str) -> tuple[int, int]:
    """
    Parse a wall-clock time in HH:MM form.

    Raises:
        ValueError: If the value is not a valid 24-hour time.
    """
    hour_text, sep, minute_text = value.strip().partition(":")
    if not sep or not hour_text.isdigit() or not minute_text.isdigit():
        msg = f"Expected HH:MM, got {value!r}"
        raise ValueError(msg)

    hour, minute = int(hour_text), int(minute_text)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        msg = f"Time out of range: {value!r}"
        raise ValueError(msg)
    return hour, minute


def pick_stream(ranked: list[StreamDescriptor], choice: str | None) -> StreamDescriptor | None:
    """
    Pick a stream by 1-based position in the ranked list or by identifier.

    Args:
        ranked: Ranked streams as listed to the user.
        choice: Position or identifier (None picks the first stream).

    Returns:
        The chosen stream, or None if nothing matches.
    """
    if not ranked:
        return None
    if choice is None:
        return ranked[0]
    if choice.isdigit():
        index = int(choice) - 1
        return ranked[index] if 0 <= index < len(ranked) else None
    return next((stream for stream in ranked if stream.id == choice), None)


def describe_state(state: SessionState) -> str:
    """Render a one-line summary of the session state."""
    match state.catalog:
        case Loading():
            catalog = "loading"
        case Empty():
            catalog = "no live streams"
        case Ready(streams=streams, stale=stale):
            catalog = f"{len(streams)} streams" + (" (cached)" if stale else "")
        case CatalogError(kind=kind):
            catalog = f"error: {kind.value}"

    match state.playback:
        case Idle():
            playback = "idle"
        case Resolving():
            playback = "resolving"
        case Buffering():
            playback = "buffering"
        case Playing():
            playback = "playing"
        case Paused():
            playback = "paused"
        case PlaybackError(kind=kind):
            playback = f"error: {kind.value}"

    parts = [f"catalog: {catalog}", f"playback: {playback}"]
    if state.selection is not None:
        parts.append(f"stream: {state.selection.title}")
    if state.sleep_timer.active:
        parts.append(f"sleep in {format_remaining(state.sleep_timer.remaining_ms)}")
    return " | ".join(parts)


class StateLogger:
    """Logs session state changes; timer ticks only at debug level."""

    def __init__(self) -> None:
        self._last: SessionState | None = None

    def __call__(self, state: SessionState) -> None:
        last = self._last
        self._last = state
        if (
            last is not None
            and last.catalog == state.catalog
            and last.playback == state.playback
            and last.selection == state.selection
            and last.sleep_timer.active == state.sleep_timer.active
        ):
            logger.debug(describe_state(state))
            return
        logger.info(describe_state(state))


def build_timer_spec(args: argparse.Namespace) -> TimerSpec | None:
    """Build the sleep timer spec requested on the command line, if any."""
    if args.sleep_at:
        hour, minute = parse_clock_time(args.sleep_at)
        return TargetTimeSpec(hour, minute)
    if args.sleep is not None:
        if args.sleep in PRESET_MINUTES:
            return PresetSpec(args.sleep)
        return DurationSpec(args.sleep * 60_000)
    return None


async def run_session(settings: Settings, args: argparse.Namespace) -> bool:
    """
    Load the catalog, play the chosen stream and wait until it ends.

    Returns:
        True if the session ran without errors.
    """
    executor = ThreadPoolExecutor(max_workers=settings.max_workers)
    backend = InvidiousBackend(settings.backend_url, timeout=settings.request_timeout)
    orchestrator = SessionOrchestrator(
        catalog=CatalogService(backend, settings.channel_id, executor=executor),
        resolver=ResolutionService(backend, executor=executor),
        engine=MpvEngine(settings.player_cmd),
        resolve_timeout=settings.resolve_timeout,
        artist=settings.channel_name,
        executor=executor,
    )
    orchestrator.subscribe(StateLogger())

    finished = asyncio.Event()
    timer_was_active = False

    def watch_for_end(state: SessionState) -> None:
        nonlocal timer_was_active
        if isinstance(state.playback, PlaybackError):
            finished.set()
        if timer_was_active and not state.sleep_timer.active:
            finished.set()
        timer_was_active = state.sleep_timer.active

    try:
        await orchestrator.start()
        orchestrator.update_search_query(args.search or "")
        state = orchestrator.state

        if isinstance(state.catalog, CatalogError):
            logger.error("Could not load live streams (%s)", state.catalog.kind.value)
            return False

        ranked = orchestrator.ranked_streams
        if args.list:
            logger.info("Found %d live streams:", len(ranked))
            for idx, stream in enumerate(ranked, 1):
                logger.info(
                    "  %d. %s (%d watching) [%s]",
                    idx,
                    stream.title,
                    stream.viewer_count,
                    stream.id,
                )
            return True

        stream = pick_stream(ranked, args.play)
        if stream is None:
            logger.error("No matching live stream found!")
            return False

        orchestrator.subscribe(watch_for_end)
        orchestrator.select(stream)
        logger.info("Watch in a browser: %s", orchestrator.watch_url())

        spec = build_timer_spec(args)
        if spec is not None and not orchestrator.start_sleep_timer(spec):
            logger.warning("Sleep timer must be at least one minute, ignoring it")

        await finished.wait()
        return not isinstance(orchestrator.state.playback, PlaybackError)
    finally:
        await orchestrator.close()
        executor.shutdown(wait=False, cancel_futures=True)


def main() -> None:
    """Main entry point for the lofiradio CLI."""
    parser = argparse.ArgumentParser(
        description="lofiradio - Play a channel's live streams from the terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Play the most watched live stream
  lofiradio

  # List live streams matching a search
  lofiradio --list --search sleep

  # Play the second stream and pause after 30 minutes
  lofiradio --play 2 --sleep 30

  # Pause playback at 23:30
  lofiradio --sleep-at 23:30
        """,
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=pathlib.Path,
        help="Path to lofiradio.yaml configuration file",
    )
    parser.add_argument(
        "--channel",
        type=str,
        help="Channel ID to list live streams from",
    )
    parser.add_argument(
        "--backend",
        type=str,
        help="Invidious instance URL",
    )
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List live streams and exit",
    )
    parser.add_argument(
        "--search",
        "-s",
        type=str,
        help="Only consider streams whose title matches this text",
    )
    parser.add_argument(
        "--play",
        "-p",
        type=str,
        help="Stream to play, by list position or ID (default: first)",
    )
    parser.add_argument(
        "--sleep",
        type=int,
        help="Pause playback after this many minutes",
    )
    parser.add_argument(
        "--sleep-at",
        type=str,
        help="Pause playback at this time of day (HH:MM)",
    )

    args = parser.parse_args()

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError, TypeError) as e:
        parser.error(str(e))

    if args.channel:
        settings.channel_id = args.channel
    if args.backend:
        settings.backend_url = args.backend
    if args.sleep_at:
        try:
            parse_clock_time(args.sleep_at)
        except ValueError as e:
            parser.error(str(e))

    setup_logging(args.debug, settings.log_file)

    try:
        ok = asyncio.run(run_session(settings, args))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        return

    if not ok:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
