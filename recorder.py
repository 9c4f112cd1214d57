"""Microphone recorder adapter."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

import numpy as np

from errors import DeviceError
from models import AudioChunk, AudioFormat, CaptureEvent, CaptureKind

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    def __init__(
        self,
        audio_format: AudioFormat | None = None,
        chunk_ms: int = 100,
        device: int | str | None = None,
    ) -> None:
        self.audio_format = audio_format or AudioFormat()
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._on_event: Optional[Callable[[CaptureEvent], None]] = None

    @property
    def is_capturing(self) -> bool:
        return self._running

    def start(self, on_event: Callable[[CaptureEvent], None]) -> None:
        with self._lock:
            if self._running:
                raise DeviceError("already capturing")
            if sd is None:
                raise DeviceError("sounddevice is not installed")
            fmt = self.audio_format
            stream = None
            try:
                stream = sd.InputStream(
                    samplerate=fmt.sample_rate,
                    channels=fmt.channels,
                    dtype="int16",
                    blocksize=fmt.frames_for(self.chunk_ms),
                    device=self.device,
                    callback=self._on_audio,
                    finished_callback=self._on_finished,
                )
                self._on_event = on_event
                self._running = True
                stream.start()
            except Exception as exc:
                self._running = False
                if stream is not None:
                    _close_quietly(stream)
                raise DeviceError(f"Failed to start recording: {exc}") from exc
            self._stream = stream
        logger.info(
            "Capture started (%d Hz, %d ch, %d ms blocks)",
            fmt.sample_rate,
            fmt.channels,
            self.chunk_ms,
        )
        on_event(CaptureEvent(kind=CaptureKind.STARTED.value))

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            stream, self._stream = self._stream, None
            on_event = self._on_event
        error = ""
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as exc:
                error = f"Failed to stop recording: {exc}"
                logger.warning(error)
        logger.info("Capture stopped")
        if on_event is not None:
            if error:
                on_event(CaptureEvent(kind=CaptureKind.ERROR.value, message=error))
            on_event(CaptureEvent(kind=CaptureKind.STOPPED.value))

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        on_event = self._on_event
        if not self._running or on_event is None:
            return
        if status:
            on_event(CaptureEvent(kind=CaptureKind.ERROR.value, message=f"Capture status: {status}"))
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        if not payload:
            return
        chunk = AudioChunk(
            pcm16_bytes=payload,
            sample_rate=self.audio_format.sample_rate,
            channels=self.audio_format.channels,
            timestamp_ms=int(time.time() * 1000),
        )
        on_event(CaptureEvent(kind=CaptureKind.CHUNK.value, chunk=chunk))

    def _on_finished(self) -> None:
        # Runs after stream.stop() as well; only an unexpected end is reported.
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stream = None
            on_event = self._on_event
        logger.warning("Capture stream ended unexpectedly")
        if on_event is not None:
            on_event(
                CaptureEvent(
                    kind=CaptureKind.ERROR.value,
                    message="Recording stopped with error: input stream ended",
                )
            )
            on_event(CaptureEvent(kind=CaptureKind.STOPPED.value))


def _close_quietly(stream: Any) -> None:
    try:
        stream.close()
    except Exception:  # pragma: no cover
        logger.debug("Ignoring error while closing a failed stream", exc_info=True)
