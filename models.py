"""Core data models for the streaming session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"


class RecordingState(str, Enum):
    IDLE = "IDLE"
    CAPTURING = "CAPTURING"


class CaptureKind(str, Enum):
    STARTED = "started"
    CHUNK = "chunk"
    STOPPED = "stopped"
    ERROR = "error"


class LinkKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STATUS = "status"
    TRANSCRIPTION = "transcription"
    ERROR = "error"


@dataclass(frozen=True)
class AudioFormat:
    sample_rate: int = 24000
    channels: int = 1
    sample_width: int = 2
    encoding: str = "pcm16"

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.channels * self.sample_width

    def frames_for(self, duration_ms: int) -> int:
        return int(self.sample_rate * (duration_ms / 1000.0))


@dataclass(frozen=True)
class AudioChunk:
    pcm16_bytes: bytes
    sample_rate: int = 24000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass(frozen=True)
class TurnDetection:
    enabled: bool = True
    type: str = "server_vad"
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 500


@dataclass(frozen=True)
class SessionConfig:
    """Remote session settings, sent once right after the socket opens."""

    modalities: tuple[str, ...] = ("text", "audio")
    instructions: str = (
        "You are a helpful assistant that transcribes audio to text accurately. "
        "Only transcribe what you hear, do not add any commentary or additional text."
    )
    input_audio_format: str = "pcm16"
    transcription_model: str = "gpt-4o-mini-transcribe"
    turn_detection: TurnDetection = field(default_factory=TurnDetection)
    tool_choice: str = "none"
    response_instructions: str = "Please transcribe the audio accurately."


@dataclass
class CaptureEvent:
    kind: str
    chunk: Optional[AudioChunk] = None
    message: str = ""


@dataclass
class LinkEvent:
    kind: str
    text: str = ""
    code: str = ""
    message: str = ""


class Transcript:
    """Append-only transcript built from fragments in arrival order."""

    def __init__(self, separator: str = " ") -> None:
        self._separator = separator
        self._fragments: list[str] = []

    def append(self, fragment: str) -> str:
        fragment = fragment.strip()
        if fragment:
            self._fragments.append(fragment)
        return self.text

    def clear(self) -> None:
        self._fragments.clear()

    def reset(self, text: str) -> None:
        """Replace the contents with ``text`` kept exactly as given."""
        self._fragments = [text] if text else []

    @property
    def text(self) -> str:
        return self._separator.join(self._fragments)

    def __len__(self) -> int:
        return len(self._fragments)
