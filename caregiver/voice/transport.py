"""Duplex connection to the remote speech model, as an ABC.

The controller drives a LiveTransport; the Gemini implementation lives in
``voice.gemini`` and tests substitute a scripted fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator

from caregiver.voice.messages import FunctionCall, ServerEvent


@dataclass
class LiveSessionConfig:
    system_instruction: str
    tools: list[dict] = field(default_factory=list)
    voice: str = "Zephyr"
    input_transcription: bool = True
    output_transcription: bool = True

    def to_live_config(self) -> dict:
        """Connect config in the live API's dict form."""
        config: dict = {
            "response_modalities": ["AUDIO"],
            "system_instruction": self.system_instruction,
            "speech_config": {
                "voice_config": {"prebuilt_voice_config": {"voice_name": self.voice}},
            },
        }
        if self.tools:
            config["tools"] = [{"function_declarations": self.tools}]
        if self.input_transcription:
            config["input_audio_transcription"] = {}
        if self.output_transcription:
            config["output_audio_transcription"] = {}
        return config


class LiveTransport(ABC):
    @property
    @abstractmethod
    def configured(self) -> bool:
        """True when a credential is available to connect."""

    @abstractmethod
    async def connect(self, config: LiveSessionConfig) -> None:
        """Open the session.  Raises ConnectionFailedError."""

    @abstractmethod
    async def send_audio(self, pcm: bytes) -> None:
        """Send one 16kHz PCM16 capture frame."""

    @abstractmethod
    async def send_tool_response(self, call: FunctionCall, response: dict) -> None:
        """Answer one function call, tagged with its id and name."""

    @abstractmethod
    def receive(self) -> AsyncIterator[ServerEvent]:
        """Yield inbound events in arrival order until the session ends."""

    @abstractmethod
    async def close(self) -> None:
        """Close the session.  Safe to call multiple times."""
