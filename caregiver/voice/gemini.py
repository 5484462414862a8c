"""Gemini implementations of the speech services (``google-genai``).

GeminiLiveTransport — duplex audio session with tool calling
                      (``client.aio.live.connect``)
SpeechClient        — one-shot TTS and text chat
                      (``client.aio.models.generate_content``)
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from google import genai
from google.genai import types

from caregiver.audio.codec import pcm_mime_type
from caregiver.config import runtime_settings, settings
from caregiver.errors import ConfigurationError, ConnectionFailedError
from caregiver.voice.messages import FunctionCall, ServerEvent, parse_server_message
from caregiver.voice.transport import LiveSessionConfig, LiveTransport

log = logging.getLogger("caregiver.voice.gemini")

CHAT_FALLBACK = "I'm sorry, I couldn't process that."
CHAT_ERROR = "Something went wrong."


class GeminiLiveTransport(LiveTransport):
    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self._api_key = settings.google_api_key if api_key is None else api_key
        self._model = model or settings.live_model
        self._cm = None
        self._session = None
        self._closed = False

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def connect(self, config: LiveSessionConfig) -> None:
        if not self.configured:
            raise ConfigurationError()

        client = genai.Client(api_key=self._api_key)
        log.info("Connecting to %s (voice=%s, %d tools)", self._model, config.voice, len(config.tools))
        cm = client.aio.live.connect(model=self._model, config=config.to_live_config())
        try:
            # Entered by hand: the session outlives this call.
            self._session = await cm.__aenter__()
        except Exception as e:
            log.error("Live connect failed: %s", e)
            raise ConnectionFailedError() from e
        self._cm = cm
        self._closed = False
        log.info("Live session open")

    def _require_session(self):
        if self._session is None or self._closed:
            raise ConnectionFailedError("Live session is not open.")
        return self._session

    async def send_audio(self, pcm: bytes) -> None:
        session = self._require_session()
        await session.send_realtime_input(
            audio=types.Blob(data=pcm, mime_type=pcm_mime_type()),
        )

    async def send_tool_response(self, call: FunctionCall, response: dict) -> None:
        session = self._require_session()
        await session.send_tool_response(
            function_responses=[
                types.FunctionResponse(id=call.id or None, name=call.name, response=response),
            ]
        )

    async def receive(self) -> AsyncIterator[ServerEvent]:
        session = self._require_session()
        while not self._closed:
            # session.receive() ends after each turn; an empty turn means the socket closed.
            received = 0
            try:
                async for msg in session.receive():
                    received += 1
                    for event in parse_server_message(msg):
                        yield event
            except Exception as e:
                if self._closed:
                    return
                log.error("Live receive failed: %s", e)
                raise ConnectionFailedError() from e
            if not received:
                log.info("Live session closed by server")
                return

    async def close(self) -> None:
        if self._closed and self._cm is None:
            return
        self._closed = True
        cm, self._cm, self._session = self._cm, None, None
        if cm is None:
            return
        try:
            await cm.__aexit__(None, None, None)
        except Exception as e:
            log.warning("Error closing live session: %s", e)
        log.info("Live session closed")


class SpeechClient:
    """One-shot speech synthesis and chat answers."""

    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = settings.google_api_key if api_key is None else api_key
        self._client: genai.Client | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> genai.Client:
        if not self.configured:
            raise ConfigurationError()
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Speak ``text``; returns 24kHz PCM16 mono."""
        client = self._get_client()
        voice = voice or runtime_settings["tts_voice"]
        try:
            response = await client.aio.models.generate_content(
                model=settings.tts_model,
                contents=text,
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=types.SpeechConfig(
                        voice_config=types.VoiceConfig(
                            prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice),
                        ),
                    ),
                ),
            )
        except Exception as e:
            log.error("TTS failed: %s", e)
            raise ConnectionFailedError("Speech synthesis failed.") from e

        try:
            data = response.candidates[0].content.parts[0].inline_data.data
        except (AttributeError, IndexError, TypeError):
            data = None
        if not data:
            raise ConnectionFailedError("Speech synthesis returned no audio.")
        log.debug("TTS: %d chars -> %d bytes (voice=%s)", len(text), len(data), voice)
        return data

    async def ask(self, prompt: str, context: str = "") -> str:
        """Answer a caregiver's typed question."""
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=settings.chat_model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=(
                        "You are Zaathi, a highly professional caregiver companion. "
                        "You provide medical advice with extreme caution. Always advise "
                        "consulting a doctor for critical issues. Be empathetic and clear. "
                        f"Context: {context}"
                    ),
                    thinking_config=types.ThinkingConfig(thinking_budget=0),
                ),
            )
        except Exception as e:
            log.error("Chat failed: %s", e)
            return CHAT_ERROR
        return response.text or CHAT_FALLBACK
