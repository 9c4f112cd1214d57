"""Realtime transcription link over a WebSocket.

One instance owns one duplex connection at a time.  ``connect`` performs
the handshake, starts the receive thread and then sends the single
``session.update`` frame.  Outbound frames go through a send lock so the
drain thread and the stop sequence never interleave writes.  Inbound
frames are classified by ``realtime_protocol.classify_frame`` and handed
to the ``on_event`` callback as :class:`LinkEvent` records.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

import websocket

import realtime_protocol as protocol
from config import RealtimeSettings
from errors import AUTH_FAILED, CONNECT_ERROR, PROTOCOL_ERROR, SEND_ERROR, ConnectError
from models import AudioChunk, ConnectionState, LinkEvent, LinkKind, SessionConfig

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


class RealtimeTranscriptionLink:
    def __init__(self, settings: RealtimeSettings | None = None) -> None:
        self._settings = settings or RealtimeSettings()
        self._lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._configured = False
        self._ws: Any = None
        self._config: Optional[SessionConfig] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._on_event: Optional[Callable[[LinkEvent], None]] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def connect(
        self,
        credential: str,
        config: SessionConfig,
        on_event: Callable[[LinkEvent], None],
    ) -> None:
        with self._lock:
            if self._state != ConnectionState.DISCONNECTED:
                logger.warning("connect() ignored in state %s", self._state.value)
                return
            if not credential:
                raise ConnectError("No API key configured", code=AUTH_FAILED)
            self._on_event = on_event
            self._config = config
            self._configured = False
            self._stop_event = threading.Event()
            self._state = ConnectionState.CONNECTING

        url = self._settings.build_url()
        logger.info("Connecting to %s", url)
        try:
            ws = websocket.create_connection(
                url,
                header=self._settings.headers(credential),
                timeout=self._settings.connect_timeout_s,
                enable_multithread=True,
            )
            ws.settimeout(None)
        except Exception as exc:
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
            raise ConnectError(f"Connection error: {exc}", code=_connect_code(exc)) from exc

        with self._lock:
            if self._state != ConnectionState.CONNECTING:
                ws.shutdown()
                raise ConnectError("Connection cancelled")
            self._ws = ws
            self._state = ConnectionState.OPEN
            logger.info("WebSocket connected")
            # Held lock keeps a fast drop from being reported ahead of this.
            self._emit(LinkEvent(kind=LinkKind.CONNECTED.value))
            if self._ws is not ws:
                raise ConnectError("Connection cancelled")
            # Receiver before session.update, so the acks are not lost.
            thread = threading.Thread(
                target=self._receive_loop,
                args=(ws, self._stop_event),
                name="realtime-recv",
                daemon=True,
            )
            self._thread = thread
            thread.start()

        try:
            sent = self._send_frame(protocol.session_update(config), raise_errors=True)
        except Exception as exc:
            self._abort_connect(thread)
            raise ConnectError(f"Session configuration failed: {exc}") from exc
        with self._lock:
            configured = sent and self._state == ConnectionState.OPEN and self._ws is ws
            self._configured = configured
        if not configured:
            self._abort_connect(thread)
            raise ConnectError("Connection closed before session configuration")
        logger.info("Session configured (transcription model %s)", config.transcription_model)

    def send_audio(self, chunk: AudioChunk) -> None:
        if not self._configured:
            return
        self._send_frame(protocol.audio_append(chunk))

    def commit(self) -> None:
        self._send_frame(protocol.audio_commit())

    def request_response(self) -> None:
        config = self._config or SessionConfig()
        self._send_frame(protocol.response_create(config))

    def disconnect(self) -> None:
        with self._lock:
            if self._state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSING):
                return
            was_open = self._state == ConnectionState.OPEN
            self._state = ConnectionState.CLOSING
            self._configured = False
            ws = self._ws
            thread = self._thread
            stop_event = self._stop_event
        stop_event.set()
        logger.info("Disconnecting")

        if ws is not None and was_open:
            try:
                with self._send_lock:
                    ws.send_close(status=NORMAL_CLOSURE, reason=b"Closing")
            except Exception as exc:
                logger.warning("Close frame failed: %s", exc)
                self._emit_error(CONNECT_ERROR, f"Disconnect error: {exc}")

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._settings.close_timeout_s)
            if thread.is_alive() and ws is not None:
                logger.warning("Receive loop did not exit in time, shutting socket down")
                try:
                    ws.shutdown()
                except Exception:  # pragma: no cover
                    logger.debug("Socket shutdown failed", exc_info=True)
                thread.join(timeout=self._settings.close_timeout_s)
        self._mark_disconnected(ws)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _abort_connect(self, thread: threading.Thread) -> None:
        # The receive thread may already be closing; wait for it to finish.
        self.disconnect()
        thread.join(timeout=self._settings.close_timeout_s)

    def _send_frame(self, frame: dict[str, Any], raise_errors: bool = False) -> bool:
        ws = self._ws
        if self._state != ConnectionState.OPEN or ws is None:
            return False
        payload = protocol.dumps(frame)
        try:
            with self._send_lock:
                ws.send(payload)
        except Exception as exc:
            if raise_errors:
                raise
            logger.warning("Send of %s failed: %s", frame.get("type"), exc)
            self._emit_error(SEND_ERROR, f"Send error: {exc}")
            return False
        logger.debug("Sent %s", frame.get("type"))
        return True

    def _receive_loop(self, ws: Any, stop_event: threading.Event) -> None:
        try:
            while not stop_event.is_set():
                message = ws.recv()
                if not message:
                    break
                self._handle_message(message)
        except websocket.WebSocketConnectionClosedException:
            logger.info("Connection closed by peer")
        except Exception as exc:
            if not stop_event.is_set():
                logger.warning("Receive error: %s", exc)
                self._emit_error(CONNECT_ERROR, f"Receive error: {exc}")
        finally:
            self._mark_disconnected(ws)

    def _handle_message(self, message: str | bytes) -> None:
        try:
            data = protocol.parse_frame(message)
        except ValueError as exc:
            self._emit_error(PROTOCOL_ERROR, f"Message processing error: {exc}")
            return
        logger.debug("Received %s", data.get("type"))
        event = protocol.classify_frame(data)
        if event is not None:
            self._emit(event)

    def _mark_disconnected(self, ws: Any) -> None:
        with self._lock:
            # A receive thread outliving its connection must not touch a newer one.
            if self._state == ConnectionState.DISCONNECTED or self._ws is not ws:
                return
            self._state = ConnectionState.CLOSING
            self._configured = False
        if ws is not None:
            try:
                ws.shutdown()
            except Exception:  # pragma: no cover
                logger.debug("Socket shutdown failed", exc_info=True)
        with self._lock:
            # disconnect() and the receive thread can both get here; one reports.
            if self._state == ConnectionState.DISCONNECTED or self._ws is not ws:
                return
            self._state = ConnectionState.DISCONNECTED
            self._ws = None
            self._thread = None
        logger.info("Disconnected")
        self._emit(LinkEvent(kind=LinkKind.DISCONNECTED.value))

    def _emit_error(self, code: str, message: str) -> None:
        self._emit(LinkEvent(kind=LinkKind.ERROR.value, code=code, message=message))

    def _emit(self, event: LinkEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Link event handler failed for %s", event.kind)


def _connect_code(exc: Exception) -> str:
    status = getattr(exc, "status_code", None)
    if status in (401, 403):
        return AUTH_FAILED
    low = str(exc).lower()
    if "401" in low or "403" in low or "unauthorized" in low:
        return AUTH_FAILED
    return CONNECT_ERROR
