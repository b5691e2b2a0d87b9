from __future__ import annotations

import signal
import threading
from pathlib import Path

import pytest

import protocol
from config import DictationConfig
from daemon import DictationDaemon, daemon_is_listening, send_request
from errors import NO_ACTIVE_SESSION, PROTOCOL_ERROR, SESSION_BUSY
from fake_models import FakeCapture, FakeOutput, FakeTranscriber, ScriptedModel
from models import OutputMode, SessionState
from session_manager import SessionEvent, SessionManager
from session_marker import SessionMarkerStore
from speculative_decoder import SpeculativeDecoder


def _daemon(tmp_path: Path, transcriber=None, transitions=None) -> tuple[DictationDaemon, FakeOutput]:  # noqa: ANN001
    output = FakeOutput()
    manager = SessionManager(
        capture=FakeCapture(),
        transcriber=transcriber or FakeTranscriber(),
        output=output,
        markers=SessionMarkerStore(tmp_path / "session.json"),
        timeout_s=30.0,
        on_state_change=(lambda f, t: transitions.append((f, t))) if transitions is not None else None,
    )
    return DictationDaemon(manager, str(tmp_path / "d.sock")), output


# ---------------------------------------------------------------
# Request mapping
# ---------------------------------------------------------------

def test_ping_answers_pong(tmp_path: Path) -> None:
    daemon, _ = _daemon(tmp_path)
    assert daemon.handle_request(protocol.Ping()) == protocol.Ok(message="pong")


def test_start_returns_session_id(tmp_path: Path) -> None:
    daemon, _ = _daemon(tmp_path)
    response = daemon.handle_request(protocol.StartRecording(mode="clipboard"))

    assert isinstance(response, protocol.Recording)
    assert response.session_id == daemon.manager.session.session_id
    assert daemon.manager.state is SessionState.RECORDING


def test_second_start_toggles_into_transcription(tmp_path: Path) -> None:
    daemon, output = _daemon(tmp_path)
    daemon.handle_request(protocol.StartRecording(mode="clipboard"))

    assert daemon.handle_request(protocol.StartRecording()) == protocol.Ok(message="stopping")
    assert daemon.manager.wait_until_idle(timeout=3.0)
    assert output.calls == [("hello", OutputMode.CLIPBOARD)]


def test_stop_without_session_is_an_error_response(tmp_path: Path) -> None:
    daemon, _ = _daemon(tmp_path)
    response = daemon.handle_request(protocol.StopRecording())

    assert isinstance(response, protocol.Error)
    assert response.code == NO_ACTIVE_SESSION


def test_start_while_transcribing_reports_busy(tmp_path: Path) -> None:
    transcriber = FakeTranscriber(block=True)
    daemon, _ = _daemon(tmp_path, transcriber)
    daemon.handle_request(protocol.StartRecording())
    daemon.handle_request(protocol.StopRecording())

    response = daemon.handle_request(protocol.StartRecording())

    assert isinstance(response, protocol.Error)
    assert response.code == SESSION_BUSY
    transcriber.release.set()
    assert daemon.manager.wait_until_idle(timeout=3.0)


def test_status_reports_lowercase_state(tmp_path: Path) -> None:
    daemon, _ = _daemon(tmp_path)
    assert daemon.handle_request(protocol.StatusRequest()) == protocol.Status(state="idle")

    daemon.handle_request(protocol.StartRecording())
    status = daemon.handle_request(protocol.StatusRequest())
    assert status.state == "recording"
    assert status.session_id == daemon.manager.session.session_id
    daemon.manager.shutdown()


def test_stop_event_with_no_session_is_logged_not_raised(tmp_path: Path) -> None:
    daemon, _ = _daemon(tmp_path)
    daemon._apply(SessionEvent.STOP)
    assert daemon.manager.state is SessionState.IDLE


# ---------------------------------------------------------------
# Socket round trip
# ---------------------------------------------------------------

def test_socket_round_trip_and_shutdown(tmp_path: Path) -> None:
    daemon, output = _daemon(tmp_path)
    socket_path = str(tmp_path / "d.sock")
    thread = threading.Thread(target=daemon.serve_forever, daemon=True)
    thread.start()

    for _ in range(100):
        if daemon_is_listening(socket_path):
            break
        threading.Event().wait(0.02)

    assert isinstance(send_request(socket_path, protocol.StartRecording()), protocol.Recording)
    daemon.post(SessionEvent.STOP)
    assert daemon.manager.wait_until_idle(timeout=3.0)
    assert output.calls == [("hello", OutputMode.TYPE)]

    assert send_request(socket_path, protocol.Shutdown()) == protocol.Ok(message="shutting down")
    thread.join(timeout=5.0)
    assert not thread.is_alive()
    assert not Path(socket_path).exists()


def test_malformed_line_gets_protocol_error(tmp_path: Path) -> None:
    import socket

    daemon, _ = _daemon(tmp_path)
    socket_path = str(tmp_path / "d.sock")
    daemon._start_server()
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(3.0)
            sock.connect(socket_path)
            sock.sendall(b"garbage\n")
            with sock.makefile("rb") as reader:
                response = protocol.decode_response(reader.readline())
    finally:
        daemon.close()

    assert isinstance(response, protocol.Error)
    assert response.code == PROTOCOL_ERROR


def test_nothing_listening_on_missing_socket(tmp_path: Path) -> None:
    assert daemon_is_listening(str(tmp_path / "missing.sock")) is False


# ---------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------

def test_from_config_uses_loader_for_both_models(tmp_path: Path) -> None:
    models = {"target": ScriptedModel([1]), "draft": ScriptedModel([1])}
    loaded: list[str] = []

    def loader(name: str) -> ScriptedModel:
        loaded.append(name)
        return models[name]

    config = DictationConfig(
        target_model="target",
        draft_model="draft",
        draft_k=2,
        notify=False,
        socket_path=str(tmp_path / "d.sock"),
        marker_path=str(tmp_path / "session.json"),
    )
    daemon = DictationDaemon.from_config(config, loader)

    assert loaded == ["target", "draft"]
    assert isinstance(daemon.manager._transcriber, SpeculativeDecoder)
    assert daemon.manager.state is SessionState.IDLE


@pytest.mark.parametrize("budget, expected", [(45.0, 45.0), (0.0, None)])
def test_from_config_wires_decode_budget_and_cancellation(tmp_path: Path, budget: float, expected) -> None:  # noqa: ANN001
    config = DictationConfig(
        target_model="target",
        decode_budget_s=budget,
        notify=False,
        socket_path=str(tmp_path / "d.sock"),
        marker_path=str(tmp_path / "session.json"),
    )
    daemon = DictationDaemon.from_config(config, lambda name: ScriptedModel([1, 2]))
    decoder = daemon.manager._transcriber

    assert decoder.round_budget_s == expected
    assert decoder.cancel_event is not None
    assert not decoder.cancel_event.is_set()

    daemon.manager.shutdown()
    assert decoder.cancel_event.is_set()


# ---------------------------------------------------------------
# OS signals
# ---------------------------------------------------------------

def _wait_until_listening(socket_path: str) -> None:
    for _ in range(250):
        if daemon_is_listening(socket_path):
            return
        threading.Event().wait(0.02)
    raise AssertionError(f"daemon never listened on {socket_path}")


def test_stop_signal_ends_recording_like_a_stop_request(tmp_path: Path) -> None:
    transitions: list[tuple[SessionState, SessionState]] = []
    transcriber = FakeTranscriber()
    daemon, output = _daemon(tmp_path, transcriber, transitions)
    socket_path = str(tmp_path / "d.sock")
    main_thread = threading.main_thread().ident
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGUSR1, signal.SIGTERM, signal.SIGINT)}
    outcome: dict[str, object] = {}

    def drive() -> None:
        try:
            _wait_until_listening(socket_path)
            outcome["start"] = send_request(socket_path, protocol.StartRecording())
            # Signals land on the main thread while it blocks on the event queue.
            signal.pthread_kill(main_thread, signal.SIGUSR1)
            outcome["idle"] = daemon.manager.wait_until_idle(timeout=3.0)
        finally:
            signal.pthread_kill(main_thread, signal.SIGTERM)

    daemon.install_signal_handlers()
    try:
        driver = threading.Thread(target=drive, daemon=True)
        driver.start()
        daemon.serve_forever()
        driver.join(timeout=5.0)
    finally:
        for sig, handler in saved.items():
            signal.signal(sig, handler)

    assert isinstance(outcome["start"], protocol.Recording)
    assert outcome["idle"] is True
    assert (SessionState.RECORDING, SessionState.TRANSCRIBING) in transitions
    assert (SessionState.TRANSCRIBING, SessionState.IDLE) in transitions
    assert len(transcriber.calls) == 1
    assert output.calls == [("hello", OutputMode.TYPE)]
    assert not Path(socket_path).exists()


def test_events_posted_from_handlers_reach_the_loop(tmp_path: Path) -> None:
    daemon, _ = _daemon(tmp_path)
    daemon.manager.request_start()

    daemon.post(SessionEvent.STOP)
    daemon.request_shutdown()
    daemon.serve_forever()

    assert daemon.manager.state is SessionState.IDLE
    assert daemon.manager._transcriber.calls
