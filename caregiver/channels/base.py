"""Capture and playback device ABCs — the hardware edge of the voice pipeline.

The voice session talks to two audio endpoints at fixed rates:

  capture:   float32 mono @ 16kHz, delivered in 2048-sample frames
  playback:  float32 buffers @ 24kHz, each started at an absolute time
             on the device's own clock

A device may be a local sound card (``channels.local``) or a browser tab
reached over WebSocket (``channels.websocket_channel``).  The rest of the
stack only sees these interfaces, which also lets tests swap in fakes.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator

import numpy as np

from caregiver.audio.codec import AudioBuffer


class CaptureDevice(ABC):
    """Microphone source yielding fixed-size float frames."""

    @abstractmethod
    async def open(self) -> None:
        """Acquire the microphone.

        Raises MicrophoneUnavailableError when permission is denied or
        no device exists.  Called once, at session start.
        """

    @abstractmethod
    def frames(self) -> AsyncIterator[np.ndarray]:
        """Yield float32 frames in capture order until closed."""

    @abstractmethod
    async def close(self) -> None:
        """Release the device handle.  Safe to call multiple times."""


class PlaybackHandle(ABC):
    """One buffer scheduled on a PlaybackDevice."""

    start_time: float
    end_time: float

    @abstractmethod
    def stop(self) -> None:
        """Stop this buffer immediately, whether playing or still pending."""


class PlaybackDevice(ABC):
    """Speaker sink with a monotonically advancing clock."""

    sample_rate: int

    @abstractmethod
    async def open(self) -> None:
        """Acquire the output device."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Seconds elapsed on the device clock since open()."""

    @abstractmethod
    def play(self, buffer: AudioBuffer, when: float) -> PlaybackHandle:
        """Schedule ``buffer`` to start at device time ``when``."""

    @abstractmethod
    async def close(self) -> None:
        """Stop everything and release the device.  Safe to call multiple times."""
