"""Tests for the realtime frame schema."""

from __future__ import annotations

import json

import pytest

import realtime_protocol as protocol
from errors import PROTOCOL_ERROR, UNHANDLED_MESSAGE
from models import AudioChunk, LinkKind, SessionConfig, TurnDetection


# ---------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------

def test_session_update_matches_wire_schema() -> None:
    frame = protocol.session_update(SessionConfig())

    assert frame["type"] == "session.update"
    session = frame["session"]
    assert session["modalities"] == ["text", "audio"]
    assert session["input_audio_format"] == "pcm16"
    assert session["input_audio_transcription"] == {"model": "gpt-4o-mini-transcribe"}
    assert session["turn_detection"] == {
        "type": "server_vad",
        "threshold": 0.5,
        "prefix_padding_ms": 300,
        "silence_duration_ms": 500,
    }
    assert session["tools"] == []
    assert session["tool_choice"] == "none"
    assert session["instructions"]


def test_session_update_with_vad_disabled_sends_null() -> None:
    config = SessionConfig(turn_detection=TurnDetection(enabled=False))
    frame = protocol.session_update(config)
    assert frame["session"]["turn_detection"] is None
    assert '"turn_detection": null' in protocol.dumps(frame)


def test_audio_append_carries_base64_pcm() -> None:
    pcm = bytes(range(256)) * 4
    frame = protocol.audio_append(AudioChunk(pcm16_bytes=pcm))

    assert frame["type"] == "input_audio_buffer.append"
    assert protocol.decode_audio(frame["audio"]) == pcm


def test_commit_and_response_frames() -> None:
    assert protocol.audio_commit() == {"type": "input_audio_buffer.commit"}
    frame = protocol.response_create(SessionConfig(response_instructions="Transcribe."))
    assert frame == {
        "type": "response.create",
        "response": {"modalities": ["text"], "instructions": "Transcribe."},
    }


def test_encode_decode_is_byte_identical() -> None:
    pcm = b"\x00\x80\xff\x7f" * 600
    assert protocol.decode_audio(protocol.encode_audio(pcm)) == pcm


# ---------------------------------------------------------------
# Inbound frames
# ---------------------------------------------------------------

def test_transcription_completed_yields_transcription() -> None:
    event = protocol.classify_frame(
        {
            "type": "conversation.item.input_audio_transcription.completed",
            "transcript": "hello world",
        }
    )
    assert event is not None
    assert event.kind == LinkKind.TRANSCRIPTION.value
    assert event.text == "hello world"


def test_empty_transcription_is_suppressed() -> None:
    event = protocol.classify_frame(
        {"type": "conversation.item.input_audio_transcription.completed", "transcript": ""}
    )
    assert event is None


@pytest.mark.parametrize(
    "msg_type, text",
    [("session.created", "Session created"), ("session.updated", "Session updated")],
)
def test_session_frames_are_status(msg_type: str, text: str) -> None:
    event = protocol.classify_frame({"type": msg_type, "session": {}})
    assert event is not None
    assert event.kind == LinkKind.STATUS.value
    assert event.message == text


def test_error_frame_uses_error_message() -> None:
    event = protocol.classify_frame(
        {"type": "error", "error": {"type": "invalid_request_error", "message": "bad audio"}}
    )
    assert event is not None
    assert event.kind == LinkKind.ERROR.value
    assert event.code == PROTOCOL_ERROR
    assert event.message == "API Error: bad audio"


def test_error_frame_without_message_serialises_payload() -> None:
    event = protocol.classify_frame({"type": "error", "error": {"code": "x"}})
    assert event is not None
    assert event.message == 'API Error: {"code": "x"}'


@pytest.mark.parametrize(
    "msg_type",
    [
        "input_audio_buffer.committed",
        "input_audio_buffer.speech_started",
        "input_audio_buffer.speech_stopped",
        "input_audio_buffer.cleared",
    ],
)
def test_audio_buffer_acks_are_suppressed(msg_type: str) -> None:
    assert protocol.classify_frame({"type": msg_type}) is None


def test_unknown_type_is_unhandled_diagnostic() -> None:
    event = protocol.classify_frame({"type": "response.done"})
    assert event is not None
    assert event.kind == LinkKind.ERROR.value
    assert event.code == UNHANDLED_MESSAGE
    assert event.message == "Unhandled message type: response.done"


def test_frame_without_type_is_protocol_error() -> None:
    event = protocol.classify_frame({"transcript": "x"})
    assert event is not None
    assert event.code == PROTOCOL_ERROR


def test_parse_frame_accepts_bytes() -> None:
    data = protocol.parse_frame(json.dumps({"type": "session.created"}).encode("utf-8"))
    assert data["type"] == "session.created"


@pytest.mark.parametrize("raw", ["not json", "[1, 2]"])
def test_parse_frame_rejects_non_objects(raw: str) -> None:
    with pytest.raises(ValueError):
        protocol.parse_frame(raw)
