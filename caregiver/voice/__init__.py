"""Live voice session: transport, message parsing and the session controller."""

from .controller import LiveSessionController, SessionState
from .messages import (
    AudioChunk,
    FunctionCall,
    Interrupted,
    ToolCallRequest,
    TranscriptFragment,
    TurnComplete,
    parse_server_message,
)
from .transport import LiveSessionConfig, LiveTransport

__all__ = [
    "AudioChunk",
    "FunctionCall",
    "Interrupted",
    "LiveSessionConfig",
    "LiveSessionController",
    "LiveTransport",
    "SessionState",
    "ToolCallRequest",
    "TranscriptFragment",
    "TurnComplete",
    "parse_server_message",
]
