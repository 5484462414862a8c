"""Inbound live-session events as a closed set of typed messages.

One server message from the live API can carry several things at once
(audio, both transcriptions, turn end).  ``parse_server_message`` splits
it into a list of events in the order the session must handle them:
tool calls, audio, user transcript, assistant transcript, interruption,
turn end.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from caregiver.models.transcript import Role

PLAYBACK_MIME_TYPE = "audio/pcm;rate=24000"


@dataclass(frozen=True)
class TranscriptFragment:
    role: Role
    text: str


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class AudioChunk:
    data: bytes
    mime_type: str = PLAYBACK_MIME_TYPE


@dataclass(frozen=True)
class FunctionCall:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallRequest:
    calls: tuple[FunctionCall, ...]


@dataclass(frozen=True)
class Interrupted:
    pass


ServerEvent = Union[TranscriptFragment, TurnComplete, AudioChunk, ToolCallRequest, Interrupted]


def _function_call(fc: Any) -> FunctionCall:
    return FunctionCall(
        id=getattr(fc, "id", None) or "",
        name=getattr(fc, "name", None) or "",
        args=dict(getattr(fc, "args", None) or {}),
    )


def parse_server_message(msg: Any) -> list[ServerEvent]:
    """Translate a ``LiveServerMessage`` into session events."""
    events: list[ServerEvent] = []

    tool_call = getattr(msg, "tool_call", None)
    if tool_call is not None and tool_call.function_calls:
        events.append(ToolCallRequest(tuple(_function_call(fc) for fc in tool_call.function_calls)))

    sc = getattr(msg, "server_content", None)
    if sc is None:
        return events

    model_turn = getattr(sc, "model_turn", None)
    if model_turn is not None and model_turn.parts:
        for part in model_turn.parts:
            blob = getattr(part, "inline_data", None)
            if blob is not None and blob.data:
                events.append(AudioChunk(blob.data, blob.mime_type or PLAYBACK_MIME_TYPE))

    for role, transcription in (
        ("user", getattr(sc, "input_transcription", None)),
        ("assistant", getattr(sc, "output_transcription", None)),
    ):
        if transcription is not None and transcription.text:
            events.append(TranscriptFragment(role, transcription.text))

    if getattr(sc, "interrupted", False):
        events.append(Interrupted())
    if getattr(sc, "turn_complete", False):
        events.append(TurnComplete())

    return events
