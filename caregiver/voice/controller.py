"""Live voice session: wires the audio pipeline to the remote model.

State machine::

    IDLE ──start()──▶ CONNECTING ──connected──▶ ACTIVE
      ▲                   │                       │
      │               (failure)          stop() / host closes /
      │                   │              connection lost
      └────── IDLE ◀──────┴────── CLOSING ◀───────┘

While ACTIVE two tasks run: the capture pump (microphone frames to the
transport, in capture order) and the receive loop (a single consumer that
handles server events strictly in arrival order).  Tool calls are answered
one response per call, whatever the tool did.  Audio chunks are decoded
concurrently and scheduled back-to-back by the pipeline.

Typical lifecycle::

    controller = LiveSessionController(transport, pipeline, dispatcher, state)
    await controller.start()      # raises VoiceSessionError on failure
    ...
    await controller.stop()
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from enum import Enum
from typing import Callable, Optional

from caregiver.audio.pipeline import AudioPipeline
from caregiver.channels.base import CaptureDevice, PlaybackDevice
from caregiver.config import SUPPORTED_LANGUAGES, runtime_settings
from caregiver.debug_events import DebugBroadcaster
from caregiver.errors import (
    START_FAILURE_PREFIX,
    ConfigurationError,
    ConnectionFailedError,
    VoiceSessionError,
)
from caregiver.models import TranscriptLog, TranscriptTurn
from caregiver.state import AppState
from caregiver.tools.dispatcher import ToolDispatcher
from caregiver.voice.messages import (
    AudioChunk,
    FunctionCall,
    Interrupted,
    ServerEvent,
    ToolCallRequest,
    TranscriptFragment,
    TurnComplete,
)
from caregiver.voice.prompts import system_instruction, voice_for
from caregiver.voice.transport import LiveSessionConfig, LiveTransport

log = logging.getLogger("caregiver.voice.controller")

EventSink = Callable[[str, dict], None]


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"


# ── Session registry ─────────────────────────────────────────────

_active_sessions: dict[str, "LiveSessionController"] = {}


def register_session(controller: "LiveSessionController") -> str:
    """Register a controller and return its unique ID."""
    session_id = secrets.token_urlsafe(18)
    controller.session_id = session_id
    controller.broadcaster = DebugBroadcaster(session_id)
    _active_sessions[session_id] = controller
    log.info("Session registered: %s", session_id)
    return session_id


def unregister_session(session_id: str) -> None:
    _active_sessions.pop(session_id, None)
    log.info("Session unregistered: %s", session_id)


def get_active_sessions() -> dict[str, "LiveSessionController"]:
    return _active_sessions


def get_session(session_id: str) -> "LiveSessionController | None":
    return _active_sessions.get(session_id)


class LiveSessionController:
    def __init__(
        self,
        transport: LiveTransport,
        pipeline: AudioPipeline,
        dispatcher: ToolDispatcher,
        state: AppState,
        language: str = "en",
        on_event: Optional[EventSink] = None,
    ) -> None:
        self._transport = transport
        self._pipeline = pipeline
        self._dispatcher = dispatcher
        self._app_state = state
        self.language = language
        self._sinks: list[EventSink] = [on_event] if on_event else []

        # Registry metadata (set by register_session)
        self.session_id: str = ""
        self.broadcaster: DebugBroadcaster | None = None
        self.created_at = time.time()

        self._state = SessionState.IDLE
        self.last_error: str | None = None
        self.transcript = TranscriptLog(runtime_settings["transcript_history"])
        self._pending_text: dict[str, str] = {"user": "", "assistant": ""}

        self._capture_task: asyncio.Task | None = None
        self._receive_task: asyncio.Task | None = None
        self._playback_tasks: set[asyncio.Task] = set()
        self.tool_calls = 0

    # ── Observers ─────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    def add_listener(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def _emit(self, event_type: str, data: dict) -> None:
        if self.broadcaster is not None:
            self.broadcaster.emit(event_type, self._state.value, data)
        for sink in self._sinks:
            try:
                sink(event_type, data)
            except Exception:
                log.exception("Event sink failed on %s", event_type)

    def _set_state(self, new_state: SessionState) -> None:
        if new_state is self._state:
            return
        log.info("Session %s: %s -> %s", self.session_id or "-", self._state.value, new_state.value)
        self._state = new_state
        self._emit("state", {"state": new_state.value})

    def describe(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self._state.value,
            "language": self.language,
            "created_at": self.created_at,
            "last_error": self.last_error,
            "tool_calls": self.tool_calls,
            "transcript": [t.model_dump() for t in self.transcript.turns],
        }

    # ── Lifecycle ─────────────────────────────────────────────────

    def _session_config(self) -> LiveSessionConfig:
        return LiveSessionConfig(
            system_instruction=system_instruction(self.language, self._app_state.patients),
            tools=self._dispatcher.declarations(),
            voice=voice_for(self.language),
        )

    async def start(self) -> None:
        """Acquire audio, open the live connection and begin streaming.

        Raises ConfigurationError, MicrophoneUnavailableError or
        ConnectionFailedError; the session is back in IDLE when it does.
        """
        if self._state is not SessionState.IDLE:
            log.warning("start() ignored in state %s", self._state.value)
            return

        self.last_error = None
        self._set_state(SessionState.CONNECTING)
        try:
            if not self._transport.configured:
                raise ConfigurationError()
            await self._pipeline.open()
            if self._state is SessionState.CONNECTING:
                await self._transport.connect(self._session_config())
        except VoiceSessionError as e:
            await self._fail_start(e)
            raise
        except asyncio.CancelledError:
            await self._teardown()
            self._set_state(SessionState.IDLE)
            raise
        except Exception as e:
            log.exception("Unexpected error starting session")
            error = VoiceSessionError(str(e) or None)
            await self._fail_start(error)
            raise error from e

        if self._state is not SessionState.CONNECTING:
            # stop() ran while we were connecting
            await self._teardown()
            return

        self._set_state(SessionState.ACTIVE)
        self._capture_task = asyncio.create_task(self._pump_capture())
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def _fail_start(self, error: VoiceSessionError) -> None:
        self.last_error = START_FAILURE_PREFIX + error.message
        log.error("Session start failed: %s", self.last_error)
        await self._teardown()
        self._emit("error", {"message": self.last_error})
        self._set_state(SessionState.IDLE)

    async def stop(self) -> None:
        """Halt capture, silence playback, close the connection.  Idempotent."""
        if self._state in (SessionState.IDLE, SessionState.CLOSING):
            return
        self._set_state(SessionState.CLOSING)

        current = asyncio.current_task()
        tasks = [
            t for t in (self._capture_task, self._receive_task, *self._playback_tasks)
            if t is not None and t is not current and not t.done()
        ]
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self._teardown()
        self._capture_task = None
        self._receive_task = None
        self._playback_tasks.clear()
        self._pending_text = {"user": "", "assistant": ""}
        self._set_state(SessionState.IDLE)

    async def _teardown(self) -> None:
        self._pipeline.interrupt()
        for name, close in (("transport", self._transport.close), ("pipeline", self._pipeline.close)):
            try:
                await close()
            except Exception as e:
                log.warning("Error closing %s: %s", name, e)

    async def _fatal(self, error: VoiceSessionError) -> None:
        if self._state is not SessionState.ACTIVE:
            return
        self.last_error = error.message
        log.error("Session %s failed: %s", self.session_id or "-", error.message)
        self._emit("error", {"message": error.message})
        await self.stop()

    # ── Streaming tasks ───────────────────────────────────────────

    async def _pump_capture(self) -> None:
        frames = 0
        try:
            async for pcm in self._pipeline.captured_frames():
                if self._state is not SessionState.ACTIVE:
                    break
                await self._transport.send_audio(pcm)
                frames += 1
        except asyncio.CancelledError:
            raise
        except VoiceSessionError as e:
            await self._fatal(e)
        except Exception as e:
            log.exception("Capture pump failed")
            await self._fatal(ConnectionFailedError(str(e) or None))
        finally:
            log.debug("Capture pump exited after %d frames", frames)

    async def _receive_loop(self) -> None:
        try:
            async for event in self._transport.receive():
                await self.handle_event(event)
        except asyncio.CancelledError:
            raise
        except VoiceSessionError as e:
            await self._fatal(e)
            return
        except Exception as e:
            log.exception("Receive loop failed")
            await self._fatal(ConnectionFailedError(str(e) or None))
            return

        if self._state is SessionState.ACTIVE:
            log.info("Live session ended by remote")
            await self.stop()

    # ── Inbound dispatch ──────────────────────────────────────────

    async def handle_event(self, event: ServerEvent) -> None:
        if isinstance(event, TranscriptFragment):
            self._pending_text[event.role] += event.text
        elif isinstance(event, TurnComplete):
            self._complete_turn()
        elif isinstance(event, AudioChunk):
            self._schedule_audio(event.data)
        elif isinstance(event, ToolCallRequest):
            for call in event.calls:
                await self._answer(call)
        elif isinstance(event, Interrupted):
            self._pipeline.interrupt()
            self._emit("interrupted", {})
        else:
            log.warning("Ignoring unknown event %r", event)

    def _complete_turn(self) -> None:
        added: list[TranscriptTurn] = []
        for role in ("user", "assistant"):
            text = self._pending_text[role].strip()
            if text:
                added.append(self.transcript.append(role, text))
        self._pending_text = {"user": "", "assistant": ""}
        if added:
            self._emit("turn", {
                "added": [t.model_dump() for t in added],
                "turns": [t.model_dump() for t in self.transcript.turns],
            })

    def _schedule_audio(self, data: bytes) -> None:
        task = asyncio.create_task(self._pipeline.play(data))
        self._playback_tasks.add(task)
        task.add_done_callback(self._playback_done)

    def _playback_done(self, task: asyncio.Task) -> None:
        self._playback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Audio playback error: %s", task.exception())

    async def _answer(self, call: FunctionCall) -> None:
        result = await self._dispatcher.dispatch(call.name, call.args)
        response = result.to_response()
        self.tool_calls += 1
        self._emit("tool_call", {"id": call.id, "tool": call.name, "args": call.args, "result": response})
        try:
            await self._transport.send_tool_response(call, response)
        except ConnectionFailedError:
            raise
        except Exception as e:
            log.error("Failed to send tool response for %s: %s", call.name, e)


def create_controller(
    app_state: AppState,
    transport: LiveTransport,
    capture: CaptureDevice,
    playback: PlaybackDevice,
    language: str = "en",
) -> LiveSessionController:
    """Assemble a voice session over the given audio devices."""
    if language not in SUPPORTED_LANGUAGES:
        log.warning("Unsupported language %r, using en", language)
        language = "en"
    return LiveSessionController(
        transport=transport,
        pipeline=AudioPipeline(capture, playback),
        dispatcher=ToolDispatcher(app_state),
        state=app_state,
        language=language,
    )
