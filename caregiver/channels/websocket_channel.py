"""Browser voice channel over a FastAPI WebSocket.

The browser owns the real microphone and speaker; this module exposes
them to the pipeline as a CaptureDevice and a PlaybackDevice.

Client → server:
  binary                      float32 LE samples @ 16kHz (2048 per frame)
  {"type": "start", "microphone": "ok"|"denied"|"missing"}
  {"type": "stop"}

Server → client:
  {"type": "audio_open", "sample_rate": 24000}     reset playback clock to 0
  {"type": "audio", "id": n, "data": <b64 PCM16>, "start_at": seconds}
  {"type": "stop_audio", "id": n}
  {"type": "state" | "transcript" | "tool_call" | "clear" | "error", ...}

Playback time is seconds since ``audio_open`` on the server's monotonic
clock; the client schedules each chunk at ``start_at`` on a clock it
zeroed when it received ``audio_open``.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import AsyncIterator

import numpy as np
from fastapi import WebSocket, WebSocketDisconnect

from caregiver.audio.codec import PLAYBACK_SAMPLE_RATE, AudioBuffer, encode_frame
from caregiver.channels.base import CaptureDevice, PlaybackDevice, PlaybackHandle
from caregiver.errors import MicrophoneUnavailableError

log = logging.getLogger("caregiver.channels.websocket")


class BrowserVoiceChannel:
    """One browser tab's audio and control traffic."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._outbound: asyncio.Queue[dict | None] = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self.microphone_status = "ok"
        self.capture = WebSocketCapture(self)
        self.playback = WebSocketPlayback(self)

    async def open(self) -> None:
        self._writer = asyncio.create_task(self._write_loop())

    def send(self, message: dict) -> None:
        self._outbound.put_nowait(message)

    async def _write_loop(self) -> None:
        try:
            while True:
                message = await self._outbound.get()
                if message is None:
                    return
                await self._ws.send_json(message)
        except WebSocketDisconnect:
            log.debug("Browser went away while sending")
        except RuntimeError as e:
            # Starlette raises RuntimeError after the socket has closed
            log.debug("Send after close: %s", e)

    async def controls(self) -> AsyncIterator[dict]:
        """Route binary frames to capture; yield control messages until disconnect."""
        while True:
            message = await self._ws.receive()
            if message["type"] == "websocket.disconnect":
                log.info("Browser disconnected")
                return

            if message.get("bytes") is not None:
                self.capture.feed(message["bytes"])
                continue

            text = message.get("text")
            if not text:
                continue
            try:
                control = json.loads(text)
            except json.JSONDecodeError:
                log.warning("Ignoring malformed control message: %.80s", text)
                continue
            if not isinstance(control, dict):
                continue

            if control.get("type") == "start":
                self.microphone_status = control.get("microphone", "ok")
            yield control

    def forward_event(self, event_type: str, data: dict) -> None:
        """Controller event sink: translate session events for the browser."""
        if event_type == "state":
            self.send({"type": "state", "state": data["state"]})
        elif event_type == "turn":
            self.send({"type": "transcript", "turns": data["turns"]})
        elif event_type == "tool_call":
            self.send({"type": "tool_call", "tool": data["tool"], "result": data["result"]})
        elif event_type == "interrupted":
            self.send({"type": "clear"})
        elif event_type == "error":
            self.send({"type": "error", "message": data["message"]})

    async def close(self) -> None:
        await self.capture.close()
        await self.playback.close()
        if self._writer is not None:
            self._outbound.put_nowait(None)
            try:
                await asyncio.wait_for(self._writer, timeout=2.0)
            except asyncio.TimeoutError:
                self._writer.cancel()
            self._writer = None


class WebSocketCapture(CaptureDevice):
    def __init__(self, channel: BrowserVoiceChannel) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()
        self._open = False

    async def open(self) -> None:
        status = self._channel.microphone_status
        if status == "denied":
            raise MicrophoneUnavailableError.denied()
        if status != "ok":
            raise MicrophoneUnavailableError()
        self._queue = asyncio.Queue()
        self._open = True

    def feed(self, data: bytes) -> None:
        if not self._open:
            return
        usable = len(data) - len(data) % 4
        self._queue.put_nowait(np.frombuffer(data[:usable], dtype="<f4").astype(np.float32))

    async def frames(self) -> AsyncIterator[np.ndarray]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    async def close(self) -> None:
        if self._open:
            self._open = False
            self._queue.put_nowait(None)


class _RemoteBuffer(PlaybackHandle):
    def __init__(self, playback: "WebSocketPlayback", chunk_id: int, start: float, duration: float) -> None:
        self._playback = playback
        self.id = chunk_id
        self.start_time = start
        self.end_time = start + duration
        self._stopped = False

    def stop(self) -> None:
        if self._stopped or self.end_time <= self._playback.current_time:
            return
        self._stopped = True
        self._playback.channel.send({"type": "stop_audio", "id": self.id})


class WebSocketPlayback(PlaybackDevice):
    sample_rate = PLAYBACK_SAMPLE_RATE

    def __init__(self, channel: BrowserVoiceChannel) -> None:
        self.channel = channel
        self._opened_at: float | None = None
        self._next_id = 0

    async def open(self) -> None:
        self._opened_at = asyncio.get_running_loop().time()
        self._next_id = 0
        self.channel.send({"type": "audio_open", "sample_rate": self.sample_rate})

    @property
    def current_time(self) -> float:
        if self._opened_at is None:
            return 0.0
        return asyncio.get_running_loop().time() - self._opened_at

    def play(self, buffer: AudioBuffer, when: float) -> PlaybackHandle:
        self._next_id += 1
        pcm = encode_frame(buffer.get_channel_data(0))
        self.channel.send({
            "type": "audio",
            "id": self._next_id,
            "data": base64.b64encode(pcm).decode("ascii"),
            "start_at": round(when, 6),
        })
        return _RemoteBuffer(self, self._next_id, when, buffer.duration)

    async def close(self) -> None:
        self._opened_at = None
