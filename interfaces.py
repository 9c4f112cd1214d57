"""Protocol interfaces used by SessionCoordinator."""

from __future__ import annotations

from typing import Callable, Protocol

from models import AudioChunk, CaptureEvent, ConnectionState, LinkEvent, SessionConfig


class AudioSource(Protocol):
    @property
    def is_capturing(self) -> bool: ...

    def start(self, on_event: Callable[[CaptureEvent], None]) -> None: ...

    def stop(self) -> None: ...


class TranscriptionLink(Protocol):
    @property
    def state(self) -> ConnectionState: ...

    def connect(
        self,
        credential: str,
        config: SessionConfig,
        on_event: Callable[[LinkEvent], None],
    ) -> None: ...

    def send_audio(self, chunk: AudioChunk) -> None: ...

    def commit(self) -> None: ...

    def request_response(self) -> None: ...

    def disconnect(self) -> None: ...


class KeyStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...
