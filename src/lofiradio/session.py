"""Session orchestration: catalog, selection, playback and sleep timer."""

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Coroutine
from concurrent.futures import Executor

from .backend import build_watch_url
from .catalog import CatalogService
from .errors import PlaybackEngineUnavailableError, error_kind
from .player import MediaMetadata, PlaybackEngine
from .resolver import DEFAULT_RESOLVE_TIMEOUT, ResolutionService
from .sleep_timer import PresetSpec, SleepScheduler, TimerSpec, spec_to_millis
from .types import (
    URL,
    Buffering,
    CatalogError,
    Empty,
    ErrorKind,
    Idle,
    Loading,
    Paused,
    PlaybackError,
    Playing,
    Ready,
    SessionState,
    SleepTimerState,
    StreamDescriptor,
    StreamURL,
)

logger = logging.getLogger(__name__)

type StateListener = Callable[[SessionState], None]


class CancellationToken:
    """Marks one selection; invalidated as soon as a newer selection starts."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class SessionOrchestrator:
    """
    Owns the session state and turns user intents into state transitions.

    All state changes happen on the event loop thread, which is the single
    publish point: listeners always receive a complete SessionState.
    Engine callbacks from other threads are marshalled onto the loop.

    Selection is last-writer-wins. Every select() gets its own cancellation
    token and cancels the previous resolution; a result that still arrives
    late is dropped by re-checking the selection before it is used.

    Engine calls run in the executor and are serialized by one lock. A
    cancelled start keeps the lock until its worker returns, then stops
    the engine if the stream it loaded was superseded.

    Attributes:
        catalog: Service fetching the live stream list.
        resolver: Service resolving streams to manifest URLs.
        engine: Playback engine.
        scheduler: Sleep timer.
        resolve_timeout: Bound for each resolution in seconds.
        artist: Artist name attached to playback metadata.
        executor: Executor for blocking engine calls (loop default if None).
    """

    def __init__(
        self,
        catalog: CatalogService,
        resolver: ResolutionService,
        engine: PlaybackEngine,
        scheduler: SleepScheduler | None = None,
        resolve_timeout: float = DEFAULT_RESOLVE_TIMEOUT,
        artist: str | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.catalog = catalog
        self.resolver = resolver
        self.engine = engine
        self.scheduler = scheduler or SleepScheduler()
        self.scheduler.on_state_change = self._on_timer_state
        self.scheduler.on_expire = self._on_timer_expired
        self.resolve_timeout = resolve_timeout
        self.artist = artist
        self.executor = executor

        self._state = SessionState()
        self._listeners: list[StateListener] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._resolve_task: asyncio.Task[None] | None = None
        self._resolve_token: CancellationToken | None = None
        self._engine_lock = asyncio.Lock()
        self._engine_tasks: set[asyncio.Task[None]] = set()
        self._engine_error: PlaybackEngineUnavailableError | None = None
        self._engine_connected = False
        # Stream whose source is loaded in the engine; engine callbacks only
        # apply while it matches the selection.
        self._engine_stream_id: str | None = None
        self._engine_playing = False
        self._engine_buffering = False

    # --- State publication ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ranked_streams(self) -> list[StreamDescriptor]:
        return self._state.ranked_streams

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener for state snapshots.

        The listener is called immediately with the current state.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, **changes: object) -> None:
        self._state = dataclasses.replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Error in session state listener")

    # --- Lifecycle ---

    async def start(self) -> None:
        """Connect the playback engine and load the catalog."""
        self._loop = asyncio.get_running_loop()
        self.engine.set_callbacks(
            on_playing_changed=self._on_playing_changed,
            on_buffering_changed=self._on_buffering_changed,
            on_engine_lost=self._on_engine_lost,
        )
        async with self._engine_lock:
            await self._connect_engine()
        await self.load_catalog()

    async def _call_engine[T](self, func: Callable[..., T], *args: object) -> T:
        """
        Run a blocking engine call in the executor.

        Callers hold _engine_lock. If the awaiting task is cancelled, the
        call still runs to completion before the cancellation propagates,
        so the lock is never released while an engine call is in flight.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.executor, func, *args)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            await asyncio.wait([future])
            raise

    async def _connect_engine(self) -> bool:
        if self._engine_connected:
            return True
        try:
            await self._call_engine(self.engine.connect)
        except PlaybackEngineUnavailableError as e:
            self._engine_error = e
            logger.error("Playback engine unavailable: %s", e)
            return False
        self._engine_error = None
        self._engine_connected = True
        return True

    def _spawn(self, coro: Coroutine[object, object, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._engine_tasks.add(task)
        task.add_done_callback(self._engine_tasks.discard)
        return task

    async def close(self) -> None:
        """Cancel outstanding work and stop the engine."""
        self._cancel_resolution()
        self.scheduler.cancel()
        for task in list(self._engine_tasks):
            task.cancel()
        async with self._engine_lock:
            if self._engine_connected:
                await self._call_engine(self.engine.close)
        logger.info("Session closed")

    # --- Catalog ---

    async def load_catalog(self) -> None:
        """Fetch the catalog and publish Empty, Ready or CatalogError."""
        self._set(catalog=Loading())
        try:
            snapshot = await self.catalog.fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind = error_kind(e)
            logger.error("Could not load catalog (%s): %s", kind.value, e)
            self._set(catalog=CatalogError(kind, str(e)))
            return

        if not snapshot.streams:
            self._set(catalog=Empty())
        else:
            self._set(catalog=Ready(snapshot.streams, stale=snapshot.stale))

    def update_search_query(self, text: str) -> None:
        self._set(search_query=text)

    # --- Selection and playback ---

    def _cancel_resolution(self) -> None:
        if self._resolve_token is not None:
            self._resolve_token.cancel()
        if self._resolve_task is not None and not self._resolve_task.done():
            self._resolve_task.cancel()
        self._resolve_task = None

    def _is_current(self, stream: StreamDescriptor, token: CancellationToken) -> bool:
        selection = self._state.selection
        return not token.cancelled and selection is not None and selection.id == stream.id

    def select(self, stream: StreamDescriptor) -> asyncio.Task[None]:
        """
        Select a stream and start resolving it, superseding any earlier selection.

        Must be called from the event loop thread.

        Returns:
            The resolution task (cancelled if a newer selection supersedes it).
        """
        self._loop = asyncio.get_running_loop()
        self._cancel_resolution()

        token = CancellationToken()
        self._resolve_token = token
        self._engine_stream_id = None
        self._set(selection=stream, playback=Buffering())
        logger.info("Selected stream: %s (%s)", stream.title, stream.id)

        task = self._loop.create_task(self._resolve_and_play(stream, token))
        self._resolve_task = task
        return task

    async def _resolve_and_play(self, stream: StreamDescriptor, token: CancellationToken) -> None:
        try:
            url = await self.resolver.resolve(stream.id, timeout=self.resolve_timeout)
        except asyncio.CancelledError:
            logger.debug("Resolution of %s cancelled", stream.id)
            raise
        except Exception as e:
            if not self._is_current(stream, token):
                logger.debug("Dropping failure of superseded resolution %s: %s", stream.id, e)
                return
            kind = error_kind(e)
            logger.error("Could not resolve stream %s (%s): %s", stream.id, kind.value, e)
            self._set(playback=PlaybackError(kind, str(e)))
            return

        async with self._engine_lock:
            # Re-check after every suspension point: a newer selection may have won
            if not self._is_current(stream, token):
                logger.debug("Dropping result of superseded resolution %s", stream.id)
                return

            if not await self._connect_engine():
                self._set(
                    playback=PlaybackError(ErrorKind.ENGINE_UNAVAILABLE, str(self._engine_error))
                )
                return

            metadata = MediaMetadata(
                title=stream.title,
                artist=self.artist,
                artwork_url=stream.thumbnail_url,
            )
            self._engine_stream_id = stream.id
            self._engine_playing = False
            self._engine_buffering = True
            try:
                await self._call_engine(self._start_engine, url, metadata)
            except PlaybackEngineUnavailableError as e:
                self._engine_stream_id = None
                if self._is_current(stream, token):
                    self._set(playback=PlaybackError(ErrorKind.ENGINE_UNAVAILABLE, str(e)))
                return
            except asyncio.CancelledError:
                await self._stop_if_superseded(stream, token)
                raise

            if await self._stop_if_superseded(stream, token):
                return

        logger.info("Playing stream: %s", stream.title)

    def _start_engine(self, url: StreamURL, metadata: MediaMetadata) -> None:
        self.engine.set_source(url, metadata)
        self.engine.play()

    async def _stop_if_superseded(self, stream: StreamDescriptor, token: CancellationToken) -> bool:
        # Caller holds _engine_lock; the engine may now hold a stream nobody selected
        if self._is_current(stream, token):
            return False
        logger.debug("Stopping superseded stream %s", stream.id)
        if self._engine_stream_id == stream.id:
            self._engine_stream_id = None
        await self._call_engine(self.engine.stop)
        return True

    def toggle_play_pause(self) -> asyncio.Task[None] | None:
        """
        Pause if the engine is playing, otherwise play.

        Returns:
            The task driving the engine, or None if there is nothing to toggle.
        """
        if self._state.selection is None or not self._engine_connected:
            logger.debug("Nothing to toggle")
            return None
        return self._spawn(self._toggle())

    async def _toggle(self) -> None:
        async with self._engine_lock:
            if self.engine.is_playing:
                await self._call_engine(self.engine.pause)
            else:
                await self._call_engine(self.engine.play)

    def watch_url(self) -> URL | None:
        """Canonical watch URL of the selected stream, if any."""
        selection = self._state.selection
        return build_watch_url(selection.id) if selection else None

    def retry(self) -> asyncio.Task[None] | None:
        """
        Re-run the operation that failed.

        Returns:
            The task doing the retry, or None if nothing has failed.
        """
        if isinstance(self._state.catalog, CatalogError):
            return asyncio.get_running_loop().create_task(self.load_catalog())
        selection = self._state.selection
        if isinstance(self._state.playback, PlaybackError) and selection is not None:
            return self.select(selection)
        return None

    # --- Engine callbacks ---

    def _on_playing_changed(self, playing: bool) -> None:
        self._dispatch(self._apply_playing, playing)

    def _on_buffering_changed(self, buffering: bool) -> None:
        self._dispatch(self._apply_buffering, buffering)

    def _on_engine_lost(self, message: str) -> None:
        self._dispatch(self._apply_engine_lost, message)

    def _dispatch[V](self, callback: Callable[[V], None], value: V) -> None:
        if self._loop is None:
            logger.debug("Dropping engine callback before session start")
            return
        try:
            self._loop.call_soon_threadsafe(callback, value)
        except RuntimeError:
            logger.debug("Dropping engine callback after loop shutdown")

    def _apply_playing(self, playing: bool) -> None:
        self._engine_playing = playing
        self._fold_engine_state()

    def _apply_buffering(self, buffering: bool) -> None:
        self._engine_buffering = buffering
        self._fold_engine_state()

    def _fold_engine_state(self) -> None:
        selection = self._state.selection
        if selection is None or selection.id != self._engine_stream_id:
            return
        if isinstance(self._state.playback, PlaybackError | Idle):
            return

        if self._engine_buffering:
            playback = Buffering()
        elif self._engine_playing:
            playback = Playing()
        else:
            playback = Paused()

        if playback != self._state.playback:
            self._set(playback=playback)

    def _apply_engine_lost(self, message: str) -> None:
        selection = self._state.selection
        if selection is None or selection.id != self._engine_stream_id:
            return
        self._engine_stream_id = None
        self._engine_playing = False
        self._engine_buffering = False
        if isinstance(self._state.playback, PlaybackError | Idle):
            return
        logger.error("Playback engine lost while playing %s: %s", selection.id, message)
        self._set(playback=PlaybackError(ErrorKind.ENGINE_UNAVAILABLE, message))

    # --- Sleep timer ---

    def start_sleep_timer(self, spec: TimerSpec) -> bool:
        """
        Start the sleep timer.

        Returns:
            False if the timer was rejected (shorter than one minute).
        """
        preset = spec.minutes if isinstance(spec, PresetSpec) else None
        return self.scheduler.start(spec_to_millis(spec), preset_minutes=preset)

    def cancel_sleep_timer(self) -> None:
        self.scheduler.cancel()

    def _on_timer_state(self, timer: SleepTimerState) -> None:
        self._set(sleep_timer=timer)

    def _on_timer_expired(self) -> None:
        logger.info("Sleep timer expired, pausing playback")
        self._spawn(self._pause_for_sleep())

    async def _pause_for_sleep(self) -> None:
        async with self._engine_lock:
            if self._engine_connected:
                await self._call_engine(self.engine.pause)
        if isinstance(self._state.playback, Playing | Buffering):
            self._engine_playing = False
            self._engine_buffering = False
            self._set(playback=Paused())
