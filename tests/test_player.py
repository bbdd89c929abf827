"""Tests for the mpv playback engine."""

import json
import subprocess
from unittest.mock import MagicMock, Mock, patch

import pytest

from lofiradio.errors import PlaybackEngineUnavailableError
from lofiradio.player import MediaMetadata, MpvEngine, MpvIpcClient

URL = "https://example.com/live.m3u8"
METADATA = MediaMetadata(title="lofi hip hop radio", artist="Lofi Girl")


def make_loaded_engine() -> tuple[MpvEngine, Mock, list[tuple[str, object]]]:
    """Engine with a fake IPC client and recording callbacks."""
    engine = MpvEngine()
    events: list[tuple[str, object]] = []
    engine.set_callbacks(
        on_playing_changed=lambda v: events.append(("playing", v)),
        on_buffering_changed=lambda v: events.append(("buffering", v)),
        on_engine_lost=lambda message: events.append(("lost", message)),
    )
    ipc = Mock()
    engine.ipc = ipc
    return engine, ipc, events


def set_properties(ipc: Mock, **values: bool) -> None:
    props = {"pause": False, "paused-for-cache": False, "core-idle": False}
    props.update({k.replace("_", "-"): v for k, v in values.items()})
    ipc.get_property.side_effect = lambda name: props[name]


def test_engine_initialization() -> None:
    """Test that the engine starts idle."""
    engine = MpvEngine()

    assert engine.player_cmd == "mpv"
    assert engine.process is None
    assert engine.ipc is None
    assert engine.is_playing is False


def test_connect_mpv_found() -> None:
    """Test connecting when mpv is installed."""
    engine = MpvEngine()

    with patch("subprocess.run") as mock_run:
        mock_run.return_value = Mock(returncode=0)
        engine.connect()

        mock_run.assert_called_once_with(
            ["which", "mpv"],
            capture_output=True,
            text=True,
            check=False,
        )


def test_connect_mpv_missing() -> None:
    """Test that a missing mpv makes the engine unavailable."""
    engine = MpvEngine()

    with patch("subprocess.run") as mock_run:
        mock_run.return_value = Mock(returncode=1)
        with pytest.raises(PlaybackEngineUnavailableError, match="not found"):
            engine.connect()


def test_connect_lookup_fails() -> None:
    """Test that a failing lookup makes the engine unavailable."""
    engine = MpvEngine()

    with (
        patch("subprocess.run", side_effect=OSError("no which")),
        pytest.raises(PlaybackEngineUnavailableError),
    ):
        engine.connect()


def test_build_command() -> None:
    """Test mpv command building."""
    engine = MpvEngine()
    cmd = engine._build_player_command(URL, METADATA)

    assert cmd[0] == "mpv"
    assert "--no-video" in cmd
    assert "--pause" in cmd
    assert f"--input-ipc-server={engine._socket_path}" in cmd
    assert "--force-media-title=Lofi Girl - lofi hip hop radio" in cmd
    assert cmd[-1] == URL


def test_build_command_without_artist() -> None:
    """Test that the title stands alone without an artist."""
    engine = MpvEngine(player_cmd="/usr/local/bin/mpv")
    cmd = engine._build_player_command(URL, MediaMetadata(title="Sleep"))

    assert cmd[0] == "/usr/local/bin/mpv"
    assert "--force-media-title=Sleep" in cmd


@patch("lofiradio.player.MpvIpcClient")
@patch("subprocess.Popen")
def test_set_source_starts_mpv(mock_popen: MagicMock, mock_ipc: MagicMock) -> None:
    """Test loading a stream starts mpv paused and reports buffering."""
    engine = MpvEngine()
    events: list[tuple[str, bool]] = []
    engine.set_callbacks(
        on_playing_changed=lambda v: events.append(("playing", v)),
        on_buffering_changed=lambda v: events.append(("buffering", v)),
    )

    with patch.object(engine, "_start_monitoring") as mock_monitoring:
        engine.set_source(URL, METADATA)

    mock_popen.assert_called_once_with(
        engine._build_player_command(URL, METADATA),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    mock_ipc.return_value.connect.assert_called_once()
    mock_monitoring.assert_called_once()
    assert engine.process is mock_popen.return_value
    assert events == [("buffering", True)]


@patch("subprocess.Popen", side_effect=OSError("exec failed"))
def test_set_source_popen_fails(mock_popen: MagicMock) -> None:  # noqa: ARG001
    """Test that mpv failing to start makes the engine unavailable."""
    engine = MpvEngine()

    with pytest.raises(PlaybackEngineUnavailableError, match="exec failed"):
        engine.set_source(URL, METADATA)

    assert engine.process is None


@patch("lofiradio.player.MpvIpcClient")
@patch("subprocess.Popen")
def test_set_source_ipc_fails(mock_popen: MagicMock, mock_ipc: MagicMock) -> None:
    """Test that an unreachable IPC socket kills the started process."""
    mock_ipc.return_value.connect.side_effect = PlaybackEngineUnavailableError("no socket")
    process = mock_popen.return_value
    engine = MpvEngine()

    with pytest.raises(PlaybackEngineUnavailableError):
        engine.set_source(URL, METADATA)

    process.terminate.assert_called_once()
    assert engine.process is None
    assert engine.ipc is None


def test_play_and_pause() -> None:
    """Test that play and pause toggle mpv's pause property."""
    engine, ipc, _ = make_loaded_engine()

    engine.play()
    engine.pause()

    assert ipc.set_property.call_args_list == [(("pause", False),), (("pause", True),)]


def test_play_without_source() -> None:
    """Test that play without a loaded stream is ignored."""
    engine = MpvEngine()
    engine.play()
    assert engine.ipc is None


def test_pause_ipc_failure_is_logged() -> None:
    """Test that a failing IPC call does not raise."""
    engine, ipc, _ = make_loaded_engine()
    ipc.set_property.side_effect = OSError("broken pipe")

    engine.pause()


def test_poll_state_reports_changes() -> None:
    """Test that polling maps mpv properties to playing and buffering."""
    engine, ipc, events = make_loaded_engine()

    set_properties(ipc, paused_for_cache=True)
    engine.poll_state()
    assert events == [("buffering", True)]

    set_properties(ipc)
    engine.poll_state()
    assert events[1:] == [("buffering", False), ("playing", True)]
    assert engine.is_playing is True

    set_properties(ipc, pause=True)
    engine.poll_state()
    assert events[3:] == [("playing", False)]


def test_poll_state_paused_is_not_buffering() -> None:
    """Test that an idle core while paused is not reported as buffering."""
    engine, ipc, events = make_loaded_engine()

    set_properties(ipc, pause=True, core_idle=True)
    engine.poll_state()

    assert events == []


def test_failing_callback_is_contained() -> None:
    """Test that an exception in a callback does not escape polling."""
    engine, ipc, _ = make_loaded_engine()
    engine.set_callbacks(
        on_playing_changed=Mock(side_effect=RuntimeError),
        on_buffering_changed=Mock(),
    )

    set_properties(ipc)
    engine.poll_state()

    assert engine.is_playing is True


def test_monitor_loop_detects_exit() -> None:
    """Test that an exited mpv is reported as lost, then stopped."""
    engine, _, events = make_loaded_engine()
    engine._playing = True
    engine.process = Mock()
    engine.process.poll.return_value = 1
    engine._monitoring = True

    engine._monitor_loop()

    assert events == [("lost", "mpv exited unexpectedly (code 1)"), ("playing", False)]
    assert engine._monitoring is False


def test_monitor_loop_exit_without_lost_callback() -> None:
    """Test that an exit is still reported when nobody listens for engine loss."""
    engine = MpvEngine()
    on_playing = Mock()
    engine.set_callbacks(on_playing_changed=on_playing, on_buffering_changed=Mock())
    engine._playing = True
    engine.process = Mock()
    engine.process.poll.return_value = 0
    engine._monitoring = True

    engine._monitor_loop()

    on_playing.assert_called_once_with(False)


def test_stop_with_running_process() -> None:
    """Test stopping a running mpv process."""
    engine, ipc, events = make_loaded_engine()
    mock_process = Mock()
    engine.process = mock_process
    engine._playing = True

    engine.stop()

    mock_process.terminate.assert_called_once()
    ipc.close.assert_called_once()
    assert engine.process is None
    assert engine.ipc is None
    assert events == [("playing", False)]


def test_stop_kills_unresponsive_process() -> None:
    """Test that mpv is killed if it ignores terminate."""
    engine = MpvEngine()
    mock_process = Mock()
    mock_process.wait.side_effect = subprocess.TimeoutExpired("mpv", 5)
    engine.process = mock_process

    engine.stop()

    mock_process.kill.assert_called_once()


def test_stop_without_running_process() -> None:
    """Test stop() when no process is running."""
    engine = MpvEngine()

    engine.stop()
    assert engine.process is None


class TestMpvIpcClient:
    """Test the JSON IPC client."""

    def test_command_skips_events(self):
        """Test that events and other replies are skipped until the matching reply."""
        client = MpvIpcClient("/tmp/test.sock")
        sock = Mock()
        sock.recv.side_effect = [
            b'{"event":"pause"}\n{"request_id":99,"data":0}\n',
            b'{"request_id":1,"error":"success","data":true}\n',
        ]
        client._sock = sock

        assert client.get_property("pause") is True

        sent = json.loads(sock.sendall.call_args[0][0])
        assert sent == {"command": ["get_property", "pause"], "request_id": 1}

    def test_command_when_closed(self):
        """Test that commands on a closed client raise OSError."""
        client = MpvIpcClient("/tmp/test.sock")

        with pytest.raises(OSError, match="not connected"):
            client.command("get_property", "pause")

    def test_connection_closed_by_mpv(self):
        """Test that an empty read raises OSError."""
        client = MpvIpcClient("/tmp/test.sock")
        client._sock = Mock()
        client._sock.recv.return_value = b""

        with pytest.raises(OSError, match="closed"):
            client.set_property("pause", True)

    def test_connect_gives_up(self):
        """Test that a missing socket makes the engine unavailable."""
        client = MpvIpcClient("/nonexistent/lofiradio-test.sock")

        with pytest.raises(PlaybackEngineUnavailableError):
            client.connect(timeout=0.1)
