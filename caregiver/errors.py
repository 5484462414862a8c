"""Error taxonomy for voice sessions and the record store.

Session-start failures (microphone, configuration) and connection failures
end the session and carry a short human-readable message.  Patient
resolution failures are not exceptions: the tool dispatcher reports them
back into the conversation as a failed ToolResult.
"""

from __future__ import annotations

START_FAILURE_PREFIX = "Failed to start voice assistant. "


class VoiceSessionError(Exception):
    """Base class for errors that end a voice session."""

    user_message = "Unknown error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)

    @property
    def message(self) -> str:
        return str(self)


class MicrophoneUnavailableError(VoiceSessionError):
    """Microphone permission denied or no capture device present."""

    user_message = "No microphone found."

    @classmethod
    def denied(cls) -> "MicrophoneUnavailableError":
        return cls("Microphone access was denied.")


class ConfigurationError(VoiceSessionError):
    """Remote service credential is missing."""

    user_message = "API key not configured."


class ConnectionFailedError(VoiceSessionError):
    """The duplex connection could not be opened or was lost."""

    user_message = "Connection to the voice service failed."


class RecordStoreError(Exception):
    """A CRUD write or read against the record store failed."""


class UnknownRecordError(LookupError):
    """A referenced patient, medicine, reminder or alert does not exist."""
