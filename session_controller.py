"""Session coordination between the microphone and the transcription link."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Callable, Optional

import numpy as np

from errors import DEVICE_ERROR, NOT_CONNECTED, SEND_ERROR, ConnectError, DeviceError
from interfaces import AudioSource, TranscriptionLink
from models import (
    AudioChunk,
    CaptureEvent,
    CaptureKind,
    ConnectionState,
    LinkEvent,
    LinkKind,
    RecordingState,
    SessionConfig,
)

logger = logging.getLogger(__name__)

ConnectionCallback = Callable[[ConnectionState], None]
RecordingCallback = Callable[[RecordingState], None]
TextCallback = Callable[[str], None]
LevelCallback = Callable[[float], None]
ErrorCallback = Callable[[str, str], None]

MAX_SAMPLE = 32767


class SessionCoordinator:
    def __init__(
        self,
        recorder: AudioSource,
        link: TranscriptionLink,
        session_config: SessionConfig | None = None,
        poll_interval_s: float = 0.05,
        flush_timeout_s: float = 0.5,
        queue_maxsize: int = 0,
        on_connection_change: Optional[ConnectionCallback] = None,
        on_recording_change: Optional[RecordingCallback] = None,
        on_transcript: Optional[TextCallback] = None,
        on_level: Optional[LevelCallback] = None,
        on_status: Optional[TextCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._link = link
        self._session_config = session_config or SessionConfig()
        self._poll_interval_s = poll_interval_s
        self._flush_timeout_s = flush_timeout_s
        self._on_connection_change = on_connection_change
        self._on_recording_change = on_recording_change
        self._on_transcript = on_transcript
        self._on_level = on_level
        self._on_status = on_status
        self._on_error = on_error

        self._lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._pending_cond = threading.Condition()
        self._pending = 0
        self._sealed = False
        self._recording_state = RecordingState.IDLE
        self._reported_connection = ConnectionState.DISCONNECTED
        self._audio_queue: Queue[AudioChunk | None] = Queue(maxsize=queue_maxsize)
        self._drain_thread: Optional[threading.Thread] = None

        self.sent_chunks = 0
        self.dropped_chunks = 0

    @property
    def connection_state(self) -> ConnectionState:
        return self._link.state

    @property
    def recording_state(self) -> RecordingState:
        return self._recording_state

    @property
    def pending_chunks(self) -> int:
        return self._pending

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self, credential: str) -> None:
        """Open the link and start draining; ``ConnectError`` is reported and re-raised."""
        if self._link.state != ConnectionState.DISCONNECTED:
            return
        self._notify_connection(ConnectionState.CONNECTING)
        try:
            self._link.connect(credential, self._session_config, self._handle_link_event)
        except ConnectError as exc:
            self._emit_error(exc.code, str(exc))
            self._notify_connection(ConnectionState.DISCONNECTED)
            raise
        self._start_drain()

    def disconnect(self) -> None:
        """Tear the session down: recorder first, then the link, both always attempted."""
        with self._lock:
            self._sealed = True
            self._safe_stop_recorder()
            self._set_recording(RecordingState.IDLE)
        self._safe_disconnect_link()
        self._stop_drain()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def start_recording(self) -> bool:
        with self._lock:
            if self._recording_state == RecordingState.CAPTURING:
                return True
            if self._link.state != ConnectionState.OPEN:
                self._emit_error(NOT_CONNECTED, "Connect before recording")
                return False
            self._sealed = False
            self._set_recording(RecordingState.CAPTURING)
            try:
                self._recorder.start(self._handle_capture_event)
            except DeviceError as exc:
                self._set_recording(RecordingState.IDLE)
                self._emit_error(exc.code, str(exc))
                return False
            self._start_drain()
            return True

    def stop_recording(self) -> None:
        """Stop capture, flush queued audio, then commit and request a response.

        Blocks for up to ``flush_timeout_s`` while queued chunks drain.
        """
        with self._lock:
            if self._recording_state != RecordingState.CAPTURING:
                return
            self._safe_stop_recorder()
            self._set_recording(RecordingState.IDLE)

        if not self._wait_for_flush(self._flush_timeout_s):
            logger.warning("Flush timed out with %d chunk(s) pending", self._pending)

        with self._send_lock:
            self._sealed = True
            discarded = self._discard_queued()
            if discarded:
                logger.info("Discarded %d chunk(s) left after flush", discarded)
            if self._link.state != ConnectionState.OPEN:
                logger.info("Link not open, skipping commit")
                return
            try:
                self._link.commit()
                self._link.request_response()
            except Exception as exc:  # pragma: no cover - link reports its own send errors
                self._emit_error(SEND_ERROR, f"Commit failed: {exc}")
        logger.info("Committed audio after %d chunk(s)", self.sent_chunks)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _handle_capture_event(self, event: CaptureEvent) -> None:
        kind = event.kind
        if kind == CaptureKind.CHUNK.value and event.chunk is not None:
            if self._recording_state != RecordingState.CAPTURING:
                return
            self._enqueue(event.chunk)
            if self._on_level:
                self._on_level(compute_audio_level(event.chunk.pcm16_bytes))
            return
        if kind == CaptureKind.ERROR.value:
            self._emit_error(DEVICE_ERROR, event.message)
            return
        if kind == CaptureKind.STOPPED.value:
            with self._lock:
                self._set_recording(RecordingState.IDLE)

    def _handle_link_event(self, event: LinkEvent) -> None:
        kind = event.kind
        if kind == LinkKind.TRANSCRIPTION.value:
            if event.text and self._on_transcript:
                self._on_transcript(event.text)
            return
        if kind == LinkKind.STATUS.value:
            logger.info("Service status: %s", event.message)
            if self._on_status:
                self._on_status(event.message)
            return
        if kind == LinkKind.ERROR.value:
            self._emit_error(event.code, event.message)
            return
        if kind == LinkKind.CONNECTED.value:
            self._notify_connection(ConnectionState.OPEN)
            return
        if kind == LinkKind.DISCONNECTED.value:
            with self._lock:
                if self._recording_state == RecordingState.CAPTURING:
                    self._safe_stop_recorder()
                    self._set_recording(RecordingState.IDLE)
            self._notify_connection(ConnectionState.DISCONNECTED)

    # ------------------------------------------------------------------
    # Queue and drain loop
    # ------------------------------------------------------------------

    def _enqueue(self, chunk: AudioChunk) -> None:
        with self._pending_cond:
            self._pending += 1
        try:
            self._audio_queue.put_nowait(chunk)
        except Full:
            self.dropped_chunks += 1
            self._chunk_done()

    def _chunk_done(self) -> None:
        with self._pending_cond:
            self._pending -= 1
            if self._pending <= 0:
                self._pending = 0
                self._pending_cond.notify_all()

    def _wait_for_flush(self, timeout: float) -> bool:
        with self._pending_cond:
            return self._pending_cond.wait_for(lambda: self._pending == 0, timeout=timeout)

    def _discard_queued(self) -> int:
        discarded = 0
        while True:
            try:
                item = self._audio_queue.get_nowait()
            except Empty:
                return discarded
            if item is None:
                # Keep the shutdown request for the drain thread.
                self._audio_queue.put_nowait(None)
                return discarded
            discarded += 1
            self.dropped_chunks += 1
            self._chunk_done()

    def _start_drain(self) -> None:
        with self._lock:
            if self._drain_thread is not None and self._drain_thread.is_alive():
                return
            self._drain_thread = threading.Thread(
                target=self._drain_loop,
                name="audio-drain",
                daemon=True,
            )
            self._drain_thread.start()

    def _stop_drain(self) -> None:
        with self._lock:
            thread, self._drain_thread = self._drain_thread, None
        if thread is None:
            self._clear_queue()
            return
        self._audio_queue.put(None)
        if thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self._poll_interval_s * 4))
        self._clear_queue()

    def _clear_queue(self) -> None:
        # Also removes a sentinel the drain thread never reached.
        while True:
            try:
                item = self._audio_queue.get_nowait()
            except Empty:
                return
            if item is not None:
                self.dropped_chunks += 1
                self._chunk_done()

    def _drain_loop(self) -> None:
        while True:
            try:
                chunk = self._audio_queue.get(timeout=self._poll_interval_s)
            except Empty:
                continue
            if chunk is None:
                return
            try:
                with self._send_lock:
                    if not self._sealed and self._link.state == ConnectionState.OPEN:
                        self._link.send_audio(chunk)
                        self.sent_chunks += 1
                    else:
                        self.dropped_chunks += 1
            except Exception as exc:
                logger.warning("Streaming error: %s", exc)
                self._emit_error(SEND_ERROR, f"Streaming error: {exc}")
            finally:
                self._chunk_done()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _notify_connection(self, state: ConnectionState) -> None:
        # The link may already have reported a drop that connect() then re-raises.
        with self._lock:
            if self._reported_connection == state:
                return
            self._reported_connection = state
        logger.info("Connection: %s", state.value)
        if self._on_connection_change:
            self._on_connection_change(state)

    def _set_recording(self, to_state: RecordingState) -> None:
        if self._recording_state == to_state:
            return
        self._recording_state = to_state
        logger.info("Recording: %s", to_state.value)
        if self._on_recording_change:
            self._on_recording_change(to_state)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception as exc:
            logger.warning("Recorder stop failed: %s", exc)
            self._emit_error(DEVICE_ERROR, f"Failed to stop recording: {exc}")

    def _safe_disconnect_link(self) -> None:
        try:
            self._link.disconnect()
        except Exception as exc:
            logger.warning("Link disconnect failed: %s", exc)
            self._emit_error(SEND_ERROR, f"Disconnect error: {exc}")


def compute_audio_level(pcm: bytes, gain: float = 3.0, ceiling: float = 100.0) -> float:
    """Average absolute amplitude of 16-bit PCM as a 0..ceiling level."""
    usable = len(pcm) - (len(pcm) % 2)
    if usable < 2:
        return 0.0
    samples = np.frombuffer(pcm[:usable], dtype="<i2").astype(np.int32)
    average = float(np.abs(samples).mean())
    normalized = (average / MAX_SAMPLE) * 100.0
    return min(ceiling, normalized * gain)


