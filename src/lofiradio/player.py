"""Playback engine interface and an mpv-backed implementation."""

import json
import logging
import os
import pathlib
import socket
import subprocess
import tempfile
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .errors import PlaybackEngineUnavailableError
from .types import URL, StreamURL

logger = logging.getLogger(__name__)

type StateCallback = Callable[[bool], None]
type LostCallback = Callable[[str], None]


@dataclass(frozen=True)
class MediaMetadata:
    """Metadata shown by the engine and the host's transport controls."""

    title: str
    artist: str | None = None
    artwork_url: URL | None = None


class PlaybackEngine(Protocol):
    """Media playback collaborator.

    Callbacks may fire on any thread; receivers marshal them as needed.
    on_engine_lost fires once if the engine dies without being stopped.
    """

    @property
    def is_playing(self) -> bool: ...

    def connect(self) -> None: ...

    def set_callbacks(
        self,
        on_playing_changed: StateCallback,
        on_buffering_changed: StateCallback,
        on_engine_lost: LostCallback | None = None,
    ) -> None: ...

    def set_source(self, url: StreamURL, metadata: MediaMetadata) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


class MpvIpcClient:
    """
    Minimal mpv JSON IPC client over a Unix domain socket.

    Synchronous request/response; mpv event messages are skipped.
    """

    def __init__(self, socket_path: str) -> None:
        self.socket_path = socket_path
        self._sock: socket.socket | None = None
        self._buffer = b""
        self._next_request_id = 1
        self._lock = threading.Lock()

    def connect(self, timeout: float = 5.0) -> None:
        deadline = time.monotonic() + timeout
        last_error: OSError | None = None
        while time.monotonic() < deadline:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.connect(self.socket_path)
            except OSError as e:
                sock.close()
                last_error = e
                time.sleep(0.05)
                continue
            sock.settimeout(2.0)
            self._sock = sock
            return

        msg = f"Could not connect to mpv IPC socket {self.socket_path}: {last_error}"
        raise PlaybackEngineUnavailableError(msg)

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self._buffer = b""

    def command(self, *args: Any) -> Any:
        """
        Send a command and return the ``data`` field of its response.

        Raises:
            OSError: If the socket is closed or mpv stops answering.
        """
        with self._lock:
            if self._sock is None:
                msg = "mpv IPC not connected"
                raise OSError(msg)

            request_id = self._next_request_id
            self._next_request_id += 1
            payload = {"command": list(args), "request_id": request_id}
            self._sock.sendall(json.dumps(payload).encode() + b"\n")

            while True:
                while b"\n" not in self._buffer:
                    chunk = self._sock.recv(4096)
                    if not chunk:
                        msg = "mpv IPC connection closed"
                        raise OSError(msg)
                    self._buffer += chunk
                line, self._buffer = self._buffer.split(b"\n", 1)
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if message.get("request_id") == request_id:
                    return message.get("data")

    def get_property(self, name: str) -> Any:
        return self.command("get_property", name)

    def set_property(self, name: str, value: Any) -> None:
        self.command("set_property", name, value)


class MpvEngine:
    """
    Plays audio streams in an mpv subprocess controlled over JSON IPC.

    A background thread polls mpv's pause and cache state and reports
    changes through the registered callbacks.

    Attributes:
        player_cmd: mpv executable name.
        poll_interval: Seconds between state polls.
        process: The running mpv process, if any.
    """

    def __init__(self, player_cmd: str = "mpv", poll_interval: float = 0.5) -> None:
        self.player_cmd = player_cmd
        self.poll_interval = poll_interval
        self.process: subprocess.Popen | None = None
        self.ipc: MpvIpcClient | None = None
        self._socket_path = str(
            pathlib.Path(tempfile.gettempdir()) / f"lofiradio-mpv-{os.getpid()}.sock"
        )
        self._on_playing_changed: StateCallback | None = None
        self._on_buffering_changed: StateCallback | None = None
        self._on_engine_lost: LostCallback | None = None
        self._playing = False
        self._buffering = False
        self._monitoring = False
        self._monitor_thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_playing(self) -> bool:
        return self._playing

    def connect(self) -> None:
        """
        Check that mpv is installed.

        Raises:
            PlaybackEngineUnavailableError: If the executable cannot be found.
        """
        try:
            result = subprocess.run(
                ["which", self.player_cmd],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            msg = f"Could not look up {self.player_cmd}: {e}"
            raise PlaybackEngineUnavailableError(msg) from e

        if result.returncode != 0:
            msg = f"{self.player_cmd} not found! Install mpv to play streams"
            raise PlaybackEngineUnavailableError(msg)
        logger.info("Found player: %s", self.player_cmd)

    def set_callbacks(
        self,
        on_playing_changed: StateCallback,
        on_buffering_changed: StateCallback,
        on_engine_lost: LostCallback | None = None,
    ) -> None:
        self._on_playing_changed = on_playing_changed
        self._on_buffering_changed = on_buffering_changed
        self._on_engine_lost = on_engine_lost

    def _build_player_command(self, url: StreamURL, metadata: MediaMetadata) -> list[str]:
        title = f"{metadata.artist} - {metadata.title}" if metadata.artist else metadata.title
        return [
            self.player_cmd,
            "--no-video",
            "--no-terminal",
            "--pause",
            f"--input-ipc-server={self._socket_path}",
            f"--force-media-title={title}",
            url,
        ]

    def set_source(self, url: StreamURL, metadata: MediaMetadata) -> None:
        """
        Load a new stream, replacing the current one. Starts paused.

        Raises:
            PlaybackEngineUnavailableError: If mpv cannot be started.
        """
        self._shutdown_process()
        cmd = self._build_player_command(url, metadata)
        try:
            self.process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            msg = f"Could not start {self.player_cmd}: {e}"
            raise PlaybackEngineUnavailableError(msg) from e

        self.ipc = MpvIpcClient(self._socket_path)
        try:
            self.ipc.connect()
        except PlaybackEngineUnavailableError:
            self._shutdown_process()
            raise
        logger.info("Loaded stream in %s: %s", self.player_cmd, metadata.title)

        self._playing = False
        self._buffering = True
        self._notify_buffering(True)
        self._start_monitoring()

    def play(self) -> None:
        self._set_pause(False)

    def pause(self) -> None:
        self._set_pause(True)

    def _set_pause(self, paused: bool) -> None:
        ipc = self.ipc
        if ipc is None:
            logger.debug("Ignoring %s without a loaded stream", "pause" if paused else "play")
            return
        try:
            ipc.set_property("pause", paused)
        except OSError as e:
            logger.warning("Could not %s mpv: %s", "pause" if paused else "resume", e)

    def stop(self) -> None:
        """Stop the current stream."""
        was_playing = self._playing
        self._shutdown_process()
        self._playing = False
        self._buffering = False
        if was_playing:
            self._notify_playing(False)
        logger.info("Playback stopped")

    def close(self) -> None:
        self.stop()

    def _shutdown_process(self) -> None:
        self._stop_monitoring()
        if self.ipc is not None:
            self.ipc.close()
            self.ipc = None
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None
        pathlib.Path(self._socket_path).unlink(missing_ok=True)

    def _start_monitoring(self) -> None:
        with self._lock:
            self._monitoring = True
            self._monitor_thread = threading.Thread(
                target=self._monitor_loop,
                daemon=True,
                name="MpvEngineMonitor",
            )
            self._monitor_thread.start()

    def _stop_monitoring(self) -> None:
        with self._lock:
            if not self._monitoring:
                return
            self._monitoring = False
            thread = self._monitor_thread
            self._monitor_thread = None

        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=5.0)

    def _monitor_loop(self) -> None:
        """Poll mpv until the process exits or monitoring stops."""
        while self._monitoring:
            process = self.process
            code = process.poll() if process is not None else None
            if process is None or code is not None:
                logger.warning("mpv exited unexpectedly (code %s)", code)
                self._monitoring = False
                self._notify_engine_lost(f"mpv exited unexpectedly (code {code})")
                self._update(playing=False, buffering=False)
                return

            try:
                self.poll_state()
            except OSError as e:
                logger.debug("mpv state poll failed: %s", e)

            time.sleep(self.poll_interval)

    def poll_state(self) -> None:
        """Read pause and cache state from mpv and report changes."""
        ipc = self.ipc
        if ipc is None:
            return
        paused = bool(ipc.get_property("pause"))
        waiting = bool(ipc.get_property("paused-for-cache")) or bool(ipc.get_property("core-idle"))
        buffering = not paused and waiting
        self._update(playing=not paused and not buffering, buffering=buffering)

    def _update(self, playing: bool, buffering: bool) -> None:
        if buffering != self._buffering:
            self._buffering = buffering
            self._notify_buffering(buffering)
        if playing != self._playing:
            self._playing = playing
            self._notify_playing(playing)

    def _notify_playing(self, playing: bool) -> None:
        if self._on_playing_changed:
            try:
                self._on_playing_changed(playing)
            except Exception:
                logger.exception("Error in playing-changed callback")

    def _notify_buffering(self, buffering: bool) -> None:
        if self._on_buffering_changed:
            try:
                self._on_buffering_changed(buffering)
            except Exception:
                logger.exception("Error in buffering-changed callback")

    def _notify_engine_lost(self, message: str) -> None:
        if self._on_engine_lost:
            try:
                self._on_engine_lost(message)
            except Exception:
                logger.exception("Error in engine-lost callback")
