"""Local sound-card devices via PortAudio (``sounddevice``).

Used by the ``caregiver talk`` CLI to run a voice session on the host's own
microphone and speakers:

  capture:   InputStream  @ 16kHz mono float32, 2048-sample blocks
  playback:  OutputStream @ 24kHz mono float32, mixed from scheduled buffers

PortAudio invokes the stream callbacks on its own thread.  Captured blocks
are handed to the event loop with ``call_soon_threadsafe``; the playback
timeline is guarded by a lock shared with the render callback.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import AsyncIterator, Optional

import numpy as np
import sounddevice as sd

from caregiver.audio.codec import (
    CAPTURE_FRAME_SAMPLES,
    CAPTURE_SAMPLE_RATE,
    PLAYBACK_SAMPLE_RATE,
    AudioBuffer,
)
from caregiver.channels.base import CaptureDevice, PlaybackDevice, PlaybackHandle
from caregiver.errors import MicrophoneUnavailableError, VoiceSessionError

log = logging.getLogger("caregiver.channels.local")


class SoundDeviceCapture(CaptureDevice):
    """Default (or named) input device as a stream of float frames."""

    def __init__(
        self,
        sample_rate: int = CAPTURE_SAMPLE_RATE,
        frame_samples: int = CAPTURE_FRAME_SAMPLES,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self._frame_samples = frame_samples
        self._device = device
        self._stream: sd.InputStream | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()
        self._closed = False

    async def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._closed = False
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._frame_samples,
                device=self._device,
                callback=self._on_block,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            log.error("Could not open input device %r: %s", self._device, e)
            raise MicrophoneUnavailableError() from e
        log.info("Microphone open @ %dHz (block=%d)", self.sample_rate, self._frame_samples)

    def _on_block(self, indata, frames, time_info, status) -> None:
        if status:
            log.debug("Capture status: %s", status)
        if self._closed or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, indata[:, 0].copy())

    async def frames(self) -> AsyncIterator[np.ndarray]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._stream is not None:
            try:
                self._stream.stop()
            finally:
                self._stream.close()
                self._stream = None
        self._queue.put_nowait(None)
        log.info("Microphone released")


class _ScheduledBuffer(PlaybackHandle):
    def __init__(self, samples: np.ndarray, start_frame: int, sample_rate: int) -> None:
        self.samples = samples
        self.start_frame = start_frame
        self.end_frame = start_frame + len(samples)
        self.start_time = start_frame / sample_rate
        self.end_time = self.end_frame / sample_rate
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class SoundDevicePlayback(PlaybackDevice):
    """Output device whose clock is the number of frames rendered so far."""

    def __init__(
        self,
        sample_rate: int = PLAYBACK_SAMPLE_RATE,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self._device = device
        self._stream: sd.OutputStream | None = None
        self._lock = threading.Lock()
        self._scheduled: list[_ScheduledBuffer] = []
        self._position = 0

    async def open(self) -> None:
        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self._device,
                callback=self._render,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            log.error("Could not open output device %r: %s", self._device, e)
            raise VoiceSessionError("No audio output device found.") from e
        log.info("Speaker open @ %dHz", self.sample_rate)

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._position / self.sample_rate

    def play(self, buffer: AudioBuffer, when: float) -> PlaybackHandle:
        start_frame = int(round(when * self.sample_rate))
        handle = _ScheduledBuffer(buffer.get_channel_data(0), start_frame, self.sample_rate)
        with self._lock:
            self._scheduled.append(handle)
        return handle

    def _render(self, outdata, frames, time_info, status) -> None:
        if status:
            log.debug("Playback status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)

        with self._lock:
            begin = self._position
            end = begin + frames
            pending = []
            for item in self._scheduled:
                if item.stopped or item.end_frame <= begin:
                    continue
                pending.append(item)
                if item.start_frame >= end:
                    continue
                lo = max(begin, item.start_frame)
                hi = min(end, item.end_frame)
                mix[lo - begin:hi - begin] += item.samples[lo - item.start_frame:hi - item.start_frame]
            self._scheduled = pending
            self._position = end

        outdata[:, 0] = np.clip(mix, -1.0, 1.0)

    async def close(self) -> None:
        with self._lock:
            for item in self._scheduled:
                item.stopped = True
            self._scheduled.clear()
        if self._stream is not None:
            try:
                self._stream.stop()
            finally:
                self._stream.close()
                self._stream = None
            log.info("Speaker released")
