"""Audio I/O pipeline — bridges capture/playback devices and the live session.

Capture side: frames from the CaptureDevice are encoded to PCM int16 and
yielded in capture order for the session to send upstream.

Playback side: PlaybackScheduler keeps a scheduling cursor.  Each decoded
chunk starts at ``max(cursor, device.current_time)`` and pushes the cursor
forward by its duration, so consecutive chunks play back-to-back.  Decodes
run concurrently, but every chunk claims its slot in the order it was
enqueued, so a fast decode never jumps ahead of a slow one.

On interruption every scheduled buffer is stopped, chunks still decoding
are dropped, and the cursor is reset to zero.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional

from caregiver.audio.codec import AudioBuffer, decode_frame, encode_frame
from caregiver.channels.base import CaptureDevice, PlaybackDevice, PlaybackHandle

log = logging.getLogger("caregiver.audio.pipeline")

Decoder = Callable[[bytes], Awaitable[AudioBuffer]]


class PlaybackScheduler:
    """Gapless, in-order playback of independently decoded chunks."""

    def __init__(
        self,
        device: PlaybackDevice,
        decode: Optional[Decoder] = None,
        channels: int = 1,
    ) -> None:
        self._device = device
        self._decode = decode or self._decode_in_executor
        self._channels = channels
        self._cursor = 0.0
        self._handles: list[PlaybackHandle] = []
        self._generation = 0
        self._tail: asyncio.Future | None = None

    @property
    def cursor(self) -> float:
        return self._cursor

    @property
    def active_handles(self) -> list[PlaybackHandle]:
        return list(self._handles)

    async def _decode_in_executor(self, data: bytes) -> AudioBuffer:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, decode_frame, data, self._device.sample_rate, self._channels
        )

    async def enqueue(self, data: bytes) -> PlaybackHandle | None:
        """Decode ``data`` and schedule it after every chunk enqueued before it.

        Returns the playback handle, or None if an interruption arrived
        while the chunk was decoding.
        """
        generation = self._generation
        previous = self._tail
        turn = asyncio.get_running_loop().create_future()
        self._tail = turn

        try:
            buffer = await self._decode(data)
            if previous is not None:
                await asyncio.shield(previous)
            if generation != self._generation:
                log.debug("Dropping chunk decoded across an interruption")
                return None
            return self._schedule(buffer)
        finally:
            if not turn.done():
                turn.set_result(None)
            if self._tail is turn:
                self._tail = None

    def _schedule(self, buffer: AudioBuffer) -> PlaybackHandle:
        now = self._device.current_time
        self._handles = [h for h in self._handles if h.end_time > now]

        start = max(self._cursor, now)
        handle = self._device.play(buffer, start)
        self._cursor = start + buffer.duration
        self._handles.append(handle)
        log.debug("Scheduled %.3fs chunk at %.3f (cursor=%.3f)", buffer.duration, start, self._cursor)
        return handle

    def interrupt(self) -> None:
        """Stop every scheduled buffer and reset the cursor to zero."""
        self._generation += 1
        stopped = 0
        for handle in self._handles:
            try:
                handle.stop()
                stopped += 1
            except Exception as e:
                log.warning("Failed to stop playback handle: %s", e)
        self._handles.clear()
        self._tail = None
        self._cursor = 0.0
        if stopped:
            log.info("Playback interrupted: stopped %d buffer(s)", stopped)


class AudioPipeline:
    """Owns one capture device and one playback device for a session.

    Typical lifecycle::

        pipeline = AudioPipeline(capture, playback)
        async with pipeline.opened():
            async for pcm in pipeline.captured_frames():
                await transport.send_audio(pcm)
    """

    def __init__(
        self,
        capture: CaptureDevice,
        playback: PlaybackDevice,
        decode: Optional[Decoder] = None,
    ) -> None:
        self._capture = capture
        self._playback = playback
        self.scheduler = PlaybackScheduler(playback, decode=decode)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Acquire microphone then speaker; release both if either fails.

        If close() runs while a device is still opening, every device
        acquired so far is released before returning.
        """
        self._closed = False
        acquired = []
        try:
            for name, device in self._devices():
                await device.open()
                acquired.append((name, device))
                if self._closed:
                    break
        except BaseException:
            await self.close()
            raise
        if self._closed:
            log.info("Audio pipeline closed while opening")
            await self._release(acquired)
            return
        log.info(
            "Audio pipeline open (playback @ %dHz)", self._playback.sample_rate,
        )

    def _devices(self):
        return (("capture", self._capture), ("playback", self._playback))

    async def _release(self, devices) -> None:
        for name, device in devices:
            try:
                await device.close()
            except Exception as e:
                log.warning("Error releasing %s device: %s", name, e)

    @asynccontextmanager
    async def opened(self) -> AsyncIterator["AudioPipeline"]:
        await self.open()
        try:
            yield self
        finally:
            await self.close()

    async def captured_frames(self) -> AsyncIterator[bytes]:
        """Yield encoded PCM int16 frames in capture order."""
        async for frame in self._capture.frames():
            if self._closed:
                break
            yield encode_frame(frame)

    async def play(self, data: bytes) -> PlaybackHandle | None:
        return await self.scheduler.enqueue(data)

    def interrupt(self) -> None:
        self.scheduler.interrupt()

    async def close(self) -> None:
        """Stop playback and release both devices.  Idempotent.

        A failure releasing one device is logged and does not keep the
        other from being released.
        """
        if self._closed:
            return
        self._closed = True
        self.scheduler.interrupt()
        await self._release(self._devices())
        log.info("Audio pipeline closed")
