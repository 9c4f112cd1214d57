"""Frame schema for the realtime transcription API.

Outbound frames are built as plain dicts and serialised with ``json``.
Inbound frames are parsed and mapped onto :class:`LinkEvent` records by
``classify_frame``; ``None`` means the frame produces no event.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Optional

from errors import PROTOCOL_ERROR, UNHANDLED_MESSAGE
from models import AudioChunk, LinkEvent, LinkKind, SessionConfig

SESSION_UPDATE = "session.update"
AUDIO_APPEND = "input_audio_buffer.append"
AUDIO_COMMIT = "input_audio_buffer.commit"
RESPONSE_CREATE = "response.create"

SESSION_CREATED = "session.created"
SESSION_UPDATED = "session.updated"
TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
ERROR = "error"
AUDIO_BUFFER_PREFIX = "input_audio_buffer"

_STATUS_TEXT = {
    SESSION_CREATED: "Session created",
    SESSION_UPDATED: "Session updated",
}


def encode_audio(pcm: bytes) -> str:
    return base64.b64encode(pcm).decode("ascii")


def decode_audio(payload: str) -> bytes:
    return base64.b64decode(payload)


def session_update(config: SessionConfig) -> dict[str, Any]:
    vad = config.turn_detection
    turn_detection: Optional[dict[str, Any]] = None
    if vad.enabled:
        turn_detection = {
            "type": vad.type,
            "threshold": vad.threshold,
            "prefix_padding_ms": vad.prefix_padding_ms,
            "silence_duration_ms": vad.silence_duration_ms,
        }
    return {
        "type": SESSION_UPDATE,
        "session": {
            "modalities": list(config.modalities),
            "instructions": config.instructions,
            "input_audio_format": config.input_audio_format,
            "input_audio_transcription": {"model": config.transcription_model},
            "turn_detection": turn_detection,
            "tools": [],
            "tool_choice": config.tool_choice,
        },
    }


def audio_append(chunk: AudioChunk) -> dict[str, Any]:
    return {"type": AUDIO_APPEND, "audio": encode_audio(chunk.pcm16_bytes)}


def audio_commit() -> dict[str, Any]:
    return {"type": AUDIO_COMMIT}


def response_create(config: SessionConfig) -> dict[str, Any]:
    return {
        "type": RESPONSE_CREATE,
        "response": {
            "modalities": ["text"],
            "instructions": config.response_instructions,
        },
    }


def dumps(frame: dict[str, Any]) -> str:
    return json.dumps(frame, ensure_ascii=False)


def parse_frame(message: str | bytes) -> dict[str, Any]:
    """Decode one inbound text frame; raises ``ValueError`` if it is not a JSON object."""
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="ignore")
    data = json.loads(message)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def classify_frame(data: dict[str, Any]) -> Optional[LinkEvent]:
    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        return LinkEvent(
            kind=LinkKind.ERROR.value,
            code=PROTOCOL_ERROR,
            message="Frame without a type field",
        )

    if msg_type in _STATUS_TEXT:
        return LinkEvent(kind=LinkKind.STATUS.value, message=_STATUS_TEXT[msg_type])

    if msg_type == TRANSCRIPTION_COMPLETED:
        transcript = data.get("transcript")
        if not transcript:
            return None
        return LinkEvent(kind=LinkKind.TRANSCRIPTION.value, text=str(transcript))

    if msg_type == ERROR:
        return LinkEvent(
            kind=LinkKind.ERROR.value,
            code=PROTOCOL_ERROR,
            message=f"API Error: {_error_text(data)}",
        )

    if msg_type.startswith(AUDIO_BUFFER_PREFIX):
        return None

    return LinkEvent(
        kind=LinkKind.ERROR.value,
        code=UNHANDLED_MESSAGE,
        message=f"Unhandled message type: {msg_type}",
    )


def _error_text(data: dict[str, Any]) -> str:
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        if message:
            return str(message)
        return json.dumps(error, ensure_ascii=False)
    if error:
        return str(error)
    return json.dumps(data, ensure_ascii=False)
