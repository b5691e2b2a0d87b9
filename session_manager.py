"""State-machine based session orchestration.

All triggers (a second CLI invocation, the OS stop signal, the watchdog timer,
decode completion) become ``SessionEvent``s fed into ``dispatch``, which is
the only code that mutates the session slot. ``dispatch`` runs under a single
re-entrant lock so read-then-write transitions never interleave.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from enum import Enum
from typing import Any, Callable, Optional

from audio_buffer import AudioFrameBuffer
from errors import (
    DECODE_ERROR,
    STALE_SESSION_RECOVERED,
    AudioCaptureError,
    NoActiveSession,
    SessionBusy,
)
from interfaces import AudioCapture, ResultSink, Transcriber
from models import (
    AudioFrame,
    DeliveryResult,
    OutputMode,
    RecordingSession,
    SessionMarker,
    SessionState,
    TranscriptionResult,
)
from session_marker import SessionMarkerStore, is_process_alive

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
ResultCallback = Callable[[TranscriptionResult, DeliveryResult], None]
ErrorCallback = Callable[[str, str], None]

# Extra buffer headroom past the timeout while the watchdog fires.
BUFFER_GRACE_S = 1.0


class SessionEvent(str, Enum):
    START = "start"
    STOP = "stop"
    TIMEOUT = "timeout"
    DECODE_DONE = "decode_done"
    DECODE_FAILED = "decode_failed"
    CAPTURE_FAILED = "capture_failed"


class SessionManager:
    def __init__(
        self,
        capture: AudioCapture,
        transcriber: Transcriber,
        output: ResultSink,
        markers: SessionMarkerStore,
        timeout_s: float = 300.0,
        sample_rate: int = 16000,
        output_mode: OutputMode = OutputMode.TYPE,
        pid: Optional[int] = None,
        is_alive: Callable[[int], bool] = is_process_alive,
        on_state_change: Optional[StateCallback] = None,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._capture = capture
        self._transcriber = transcriber
        self._output = output
        self._markers = markers
        self._timeout_s = timeout_s
        self._sample_rate = sample_rate
        self._default_mode = output_mode
        self._pid = pid if pid is not None else os.getpid()
        self._is_alive = is_alive
        self._on_state_change = on_state_change
        self._on_result = on_result
        self._on_error = on_error
        self._cancel_event = cancel_event

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[RecordingSession] = None
        self._mode = output_mode
        self._timer: Optional[threading.Timer] = None
        self._decode_thread: Optional[threading.Thread] = None
        self._idle = threading.Event()
        self._idle.set()
        self._last_result: Optional[TranscriptionResult] = None
        self._capturing = False
        self.dropped_frames = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def last_result(self) -> Optional[TranscriptionResult]:
        return self._last_result

    # ------------------------------------------------------------------
    # Public triggers
    # ------------------------------------------------------------------

    def request_start(
        self,
        output_mode: Optional[OutputMode] = None,
        timeout_s: Optional[float] = None,
    ) -> SessionState:
        return self.dispatch(SessionEvent.START, (output_mode, timeout_s))

    def request_stop(self) -> SessionState:
        return self.dispatch(SessionEvent.STOP)

    def on_timeout(self, session_id: str) -> SessionState:
        return self.dispatch(SessionEvent.TIMEOUT, session_id)

    def report_capture_error(self, exc: Exception) -> None:
        session = self._session
        if session is not None:
            self.dispatch(SessionEvent.CAPTURE_FAILED, (session.session_id, exc))

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        return self._idle.wait(timeout)

    def dispatch(self, event: SessionEvent, payload: Any = None) -> SessionState:
        with self._lock:
            if event is SessionEvent.START:
                return self._handle_start(*(payload or (None, None)))
            if event is SessionEvent.STOP:
                return self._handle_stop()
            if event is SessionEvent.TIMEOUT:
                return self._handle_timeout(payload)
            session_id, value = payload
            if self._session is None or self._session.session_id != session_id:
                logger.debug("Ignoring %s for finished session %s", event.value, session_id)
                return self._state
            if event is SessionEvent.DECODE_DONE:
                return self._handle_decode_done(value)
            if event in (SessionEvent.DECODE_FAILED, SessionEvent.CAPTURE_FAILED):
                self._fail(value)
                return self._state
            raise ValueError(f"unknown session event: {event}")

    def recover_stale_state(self) -> bool:
        """Discard a marker whose owning process is gone. Returns True if one was discarded."""
        with self._lock:
            marker = self._markers.read()
            if marker is None:
                if not self._markers.exists():
                    return False
                reason = "unreadable session marker"
            elif marker.pid == self._pid:
                if self._session is not None and self._session.session_id == marker.session_id:
                    return False
                reason = f"session {marker.session_id} was abandoned by this process"
            elif self._is_alive(marker.pid):
                return False
            else:
                reason = f"session {marker.session_id} owned by dead process {marker.pid}"

            self._markers.remove()
            logger.warning("Stale session recovered: %s", reason)
            self._emit_error(STALE_SESSION_RECOVERED, reason)
            if self._session is None and self._state is not SessionState.IDLE:
                self._transition(SessionState.IDLE)
            return True

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Abandon a recording in progress, cancel an in-flight decode and wait for it."""
        with self._lock:
            if self._state is SessionState.RECORDING:
                logger.info("Discarding recording on shutdown")
                self._teardown()
                self._transition(SessionState.IDLE)
            thread = self._decode_thread
            if self._cancel_event is not None:
                self._cancel_event.set()
        if thread is not None and thread.is_alive():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Decode thread %s still running after shutdown", thread.name)

    # ------------------------------------------------------------------
    # Transitions (called with the lock held)
    # ------------------------------------------------------------------

    def _handle_start(self, output_mode: Optional[OutputMode], timeout_s: Optional[float]) -> SessionState:
        self.recover_stale_state()
        if self._state is SessionState.ERROR:
            logger.info("Recovering from error state")
            self._teardown()
            self._transition(SessionState.IDLE)
        if self._state is SessionState.RECORDING:
            return self._handle_stop()
        if self._state is SessionState.TRANSCRIBING:
            raise SessionBusy()

        marker = self._markers.read()
        if marker is not None and marker.pid != self._pid:
            raise SessionBusy(f"session {marker.session_id} is owned by process {marker.pid}")

        limit = timeout_s if timeout_s and timeout_s > 0 else self._timeout_s
        session = RecordingSession(
            session_id=uuid.uuid4().hex,
            owner_pid=self._pid,
            started_at=time.time(),
            deadline=time.monotonic() + limit,
            buffer=AudioFrameBuffer(self._sample_rate, limit + BUFFER_GRACE_S),
        )
        self._session = session
        self._mode = output_mode or self._default_mode
        self._markers.write(SessionMarker(session.session_id, self._pid, session.started_at, "recording"))
        self._transition(SessionState.RECORDING)
        self._arm_timer(session)
        logger.info("Session %s recording (max %.0fs)", session.session_id, limit)

        self._capturing = True
        try:
            self._capture.start(self._on_frame)
        except Exception as exc:
            error = exc if isinstance(exc, AudioCaptureError) else AudioCaptureError(f"capture failed to start: {exc}")
            self._fail(error)
            if error is exc:
                raise
            raise error from exc
        return self._state

    def _handle_stop(self) -> SessionState:
        if self._state is not SessionState.RECORDING or self._session is None:
            raise NoActiveSession()
        return self._begin_transcription(self._session)

    def _handle_timeout(self, session_id: str) -> SessionState:
        session = self._session
        if session is None or session.session_id != session_id or self._state is not SessionState.RECORDING:
            return self._state
        logger.info("Session %s reached its recording limit", session_id)
        return self._begin_transcription(session)

    def _begin_transcription(self, session: RecordingSession) -> SessionState:
        self._cancel_timer()
        self._safe_stop_capture()
        session.buffer.freeze()
        self._transition(SessionState.TRANSCRIBING)
        self._markers.write(SessionMarker(session.session_id, self._pid, session.started_at, "transcribing"))
        logger.info(
            "Session %s transcribing %.2fs of audio", session.session_id, session.buffer.total_duration
        )
        thread = threading.Thread(
            target=self._run_decode,
            args=(session,),
            name=f"decode-{session.session_id[:8]}",
            daemon=True,
        )
        self._decode_thread = thread
        thread.start()
        return self._state

    def _handle_decode_done(self, outcome: tuple[TranscriptionResult, DeliveryResult]) -> SessionState:
        result, delivery = outcome
        if not delivery.success and result.text.strip():
            logger.warning("Output delivery failed: %s", delivery.reason)
        self._last_result = result
        self._teardown()
        self._transition(SessionState.IDLE)
        if self._on_result:
            self._on_result(result, delivery)
        return self._state

    def _fail(self, exc: Exception) -> None:
        code = getattr(exc, "code", DECODE_ERROR)
        session_id = self._session.session_id if self._session else "-"
        logger.error("Session %s failed [%s]: %s", session_id, code, exc)
        self._transition(SessionState.ERROR)
        self._emit_error(code, str(exc))
        self._teardown()
        self._transition(SessionState.IDLE)

    # ------------------------------------------------------------------
    # Workers and helpers
    # ------------------------------------------------------------------

    def _run_decode(self, session: RecordingSession) -> None:
        try:
            result = self._transcriber.transcribe(session.buffer)
        except Exception as exc:
            self.dispatch(SessionEvent.DECODE_FAILED, (session.session_id, exc))
            return
        with self._lock:
            if self._session is not session:
                logger.debug("Dropping result of abandoned session %s", session.session_id)
                return
            mode = self._mode
        # Typing can take seconds; the session stays TRANSCRIBING but the lock is free.
        delivery = self._deliver(result, mode)
        self.dispatch(SessionEvent.DECODE_DONE, (session.session_id, (result, delivery)))

    def _on_frame(self, frame: AudioFrame) -> None:
        session = self._session
        if session is None or session.state is not SessionState.RECORDING:
            return
        try:
            accepted = session.buffer.append(frame)
        except AudioCaptureError as exc:
            # Runs on the capture thread; stopping the stream from here could deadlock.
            threading.Thread(
                target=self.dispatch,
                args=(SessionEvent.CAPTURE_FAILED, (session.session_id, exc)),
                daemon=True,
            ).start()
            return
        if not accepted:
            self.dropped_frames += 1

    def _deliver(self, result: TranscriptionResult, mode: OutputMode) -> DeliveryResult:
        try:
            return self._output.deliver(result, mode)
        except Exception as exc:
            logger.exception("Output dispatcher raised")
            return DeliveryResult(success=False, reason=str(exc), mode=mode)

    def _arm_timer(self, session: RecordingSession) -> None:
        self._cancel_timer()
        delay = max(0.0, session.deadline - time.monotonic())
        timer = threading.Timer(delay, self.on_timeout, args=(session.session_id,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _teardown(self) -> None:
        self._cancel_timer()
        session = self._session
        if session is None:
            return
        if self._capturing:
            self._safe_stop_capture()
        session.buffer.freeze()
        marker = self._markers.read()
        if marker is None or marker.session_id == session.session_id:
            self._markers.remove()
        self._session = None

    def _safe_stop_capture(self) -> None:
        self._capturing = False
        try:
            self._capture.stop()
        except Exception:
            logger.exception("Audio capture failed to stop cleanly")

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._session is not None:
            self._session.state = to_state
        if to_state is SessionState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()
        logger.debug("State %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
