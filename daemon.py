"""Long-lived dictation daemon and its Unix-socket control channel."""

from __future__ import annotations

import logging
import signal
import socket
import socketserver
import threading
from functools import partial
from pathlib import Path
from queue import SimpleQueue
from typing import Callable, Optional

import protocol
from config import DictationConfig
from errors import DictationError, NoActiveSession, ProtocolError
from interfaces import TokenModel
from model_pair import load_model_pair
from models import OutputMode, SessionState
from output_dispatcher import DesktopNotifier, KeyboardTextOutput, OutputDispatcher, StatusRefresher
from recorder import SoundDeviceRecorder
from session_manager import SessionEvent, SessionManager
from session_marker import SessionMarkerStore
from speculative_decoder import SpeculativeDecoder

logger = logging.getLogger(__name__)

# Sentinel queued by SIGTERM/SIGINT and Shutdown requests.
_SHUTDOWN = None


class _ControlHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        line = self.rfile.readline()
        try:
            request = protocol.decode_request(line)
        except ProtocolError as exc:
            response: protocol.Response = protocol.Error(code=exc.code, message=exc.message)
        else:
            response = self.server.dictation_daemon.handle_request(request)  # type: ignore[attr-defined]
        self.wfile.write(protocol.encode(response))


class _ControlServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True

    def __init__(self, path: str, daemon: "DictationDaemon") -> None:
        self.dictation_daemon = daemon
        super().__init__(path, _ControlHandler)


def send_request(socket_path: str, request: protocol.Request, timeout: float = 5.0) -> protocol.Response:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        sock.connect(socket_path)
        sock.sendall(protocol.encode(request))
        with sock.makefile("rb") as reader:
            return protocol.decode_response(reader.readline())


def daemon_is_listening(socket_path: str) -> bool:
    try:
        response = send_request(socket_path, protocol.Ping(), timeout=1.0)
    except (OSError, ProtocolError):
        return False
    return isinstance(response, protocol.Ok)


class DictationDaemon:
    def __init__(self, manager: SessionManager, socket_path: str) -> None:
        self._manager = manager
        self._socket_path = socket_path
        # SimpleQueue.put is reentrant, so signal handlers may call it mid-get.
        self._events: SimpleQueue = SimpleQueue()
        self._server: Optional[_ControlServer] = None

    @property
    def manager(self) -> SessionManager:
        return self._manager

    @classmethod
    def from_config(
        cls,
        config: DictationConfig,
        loader: Optional[Callable[[str], TokenModel]] = None,
    ) -> "DictationDaemon":
        if loader is None:
            from whisper_backend import WhisperTokenModel

            loader = partial(WhisperTokenModel.load, device=config.device, language=config.language)
        models = load_model_pair(config, loader)
        cancel = threading.Event()
        notifier = DesktopNotifier() if config.notify else None
        manager = SessionManager(
            capture=SoundDeviceRecorder(sample_rate=config.sample_rate),
            transcriber=SpeculativeDecoder(
                models,
                cancel_event=cancel,
                round_budget_s=config.decode_budget_s if config.decode_budget_s > 0 else None,
            ),
            output=OutputDispatcher(KeyboardTextOutput(), notifier),
            markers=SessionMarkerStore(Path(config.marker_path)),
            timeout_s=config.timeout_s,
            sample_rate=config.sample_rate,
            output_mode=OutputMode.parse(config.output_mode) or OutputMode.TYPE,
            on_state_change=StatusRefresher(config.refresh_command),
            on_error=lambda code, message: logger.warning("%s: %s", code, message),
            cancel_event=cancel,
        )
        return cls(manager, config.socket_path)

    def handle_request(self, request: protocol.Request) -> protocol.Response:
        manager = self._manager
        try:
            if isinstance(request, protocol.Ping):
                return protocol.Ok(message="pong")
            if isinstance(request, protocol.StartRecording):
                mode = OutputMode.parse(request.mode) if request.mode else None
                state = manager.request_start(mode, request.max_duration or None)
                session = manager.session
                if state is SessionState.RECORDING and session is not None:
                    return protocol.Recording(session_id=session.session_id)
                return protocol.Ok(message="stopping")
            if isinstance(request, protocol.StopRecording):
                manager.request_stop()
                return protocol.Ok(message="stopping")
            if isinstance(request, protocol.StatusRequest):
                session = manager.session
                return protocol.Status(
                    state=manager.state.value.lower(),
                    session_id=session.session_id if session else None,
                )
            if isinstance(request, protocol.Shutdown):
                self.request_shutdown()
                return protocol.Ok(message="shutting down")
        except DictationError as exc:
            return protocol.Error(code=exc.code, message=exc.message)
        return protocol.Error(code=ProtocolError.code, message=f"unsupported request {request.type}")

    def post(self, event: Optional[SessionEvent]) -> None:
        self._events.put(event)

    def request_shutdown(self) -> None:
        self.post(_SHUTDOWN)

    def install_signal_handlers(self) -> None:
        # Handlers only enqueue; the daemon loop applies the event.
        signal.signal(signal.SIGUSR1, lambda signum, frame: self.post(SessionEvent.STOP))
        signal.signal(signal.SIGTERM, lambda signum, frame: self.request_shutdown())
        signal.signal(signal.SIGINT, lambda signum, frame: self.request_shutdown())

    def serve_forever(self) -> None:
        self._manager.recover_stale_state()
        self._start_server()
        logger.info("Daemon listening on %s", self._socket_path)
        try:
            while True:
                event = self._events.get()
                if event is _SHUTDOWN:
                    break
                self._apply(event)
        finally:
            self.close()

    def close(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
            Path(self._socket_path).unlink(missing_ok=True)
        self._manager.shutdown()
        logger.info("Daemon stopped")

    def _apply(self, event: SessionEvent) -> None:
        try:
            self._manager.dispatch(event)
        except NoActiveSession:
            logger.info("Stop requested with no recording in progress")
        except DictationError as exc:
            logger.warning("%s rejected: %s", event.value, exc)

    def _start_server(self) -> None:
        path = Path(self._socket_path)
        if path.exists():
            if daemon_is_listening(self._socket_path):
                raise RuntimeError(f"another daemon is listening on {path}")
            path.unlink()
        path.parent.mkdir(parents=True, exist_ok=True)
        self._server = _ControlServer(self._socket_path, self)
        thread = threading.Thread(target=self._server.serve_forever, name="control-server", daemon=True)
        thread.start()
