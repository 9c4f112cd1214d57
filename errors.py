"""Shared error codes, exceptions and the user-facing error feed."""

from __future__ import annotations

import threading
from collections import deque

DEVICE_ERROR = "DEVICE_ERROR"
CONNECT_ERROR = "CONNECT_ERROR"
AUTH_FAILED = "AUTH_FAILED"
SEND_ERROR = "SEND_ERROR"
PROTOCOL_ERROR = "PROTOCOL_ERROR"
UNHANDLED_MESSAGE = "UNHANDLED_MESSAGE"
NOT_CONNECTED = "NOT_CONNECTED"

ERROR_MESSAGES = {
    DEVICE_ERROR: "Microphone is unavailable.",
    CONNECT_ERROR: "Connection failed, please retry.",
    AUTH_FAILED: "API key is missing or invalid.",
    SEND_ERROR: "Failed to send data to the service.",
    PROTOCOL_ERROR: "The service reported an error.",
    UNHANDLED_MESSAGE: "Received an unhandled message.",
    NOT_CONNECTED: "Connect before recording.",
}


class VoiceStreamError(Exception):
    code = PROTOCOL_ERROR

    def __init__(self, message: str = "", code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or ERROR_MESSAGES.get(self.code, self.code))


class DeviceError(VoiceStreamError):
    code = DEVICE_ERROR


class ConnectError(VoiceStreamError):
    code = CONNECT_ERROR


class ErrorFeed:
    """Bounded, most-recent-first list of error messages for display."""

    def __init__(self, max_entries: int = 20, max_chars: int = 500) -> None:
        self._entries: deque[str] = deque(maxlen=max_entries)
        self._max_chars = max_chars
        self._lock = threading.Lock()

    def push(self, message: str) -> None:
        if not message:
            return
        with self._lock:
            self._entries.appendleft(message)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def entries(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def text(self) -> str:
        joined = " | ".join(self.entries)
        if len(joined) > self._max_chars:
            return joined[: self._max_chars] + "..."
        return joined

    def __len__(self) -> int:
        return len(self._entries)
