"""PCM codec — float samples <-> 16-bit little-endian wire encoding.

Captured microphone audio arrives as float samples in [-1, 1].  The live
speech service expects raw PCM int16 LE mono at 16kHz on the way in and
returns PCM int16 LE mono at 24kHz on the way out.

  encode_frame:  float [-1, 1]  → int16 LE bytes   (x * 32768, truncated)
  decode_frame:  int16 LE bytes → float32 buffer   (n / 32768)

No resampling happens here.  Capture and playback run on separate devices
at their own fixed rates.
"""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from typing import Sequence

import numpy as np

SCALE = 32768.0
INT16_MIN = -32768
INT16_MAX = 32767

CAPTURE_SAMPLE_RATE = 16000
PLAYBACK_SAMPLE_RATE = 24000
CAPTURE_FRAME_SAMPLES = 2048


@dataclass
class AudioBuffer:
    """Decoded audio: float32 samples shaped (channels, frames)."""

    channel_data: np.ndarray
    sample_rate: int = PLAYBACK_SAMPLE_RATE

    @property
    def channels(self) -> int:
        return int(self.channel_data.shape[0])

    @property
    def frame_count(self) -> int:
        return int(self.channel_data.shape[1])

    @property
    def duration(self) -> float:
        """Playback length in seconds."""
        return self.frame_count / self.sample_rate

    def get_channel_data(self, channel: int) -> np.ndarray:
        return self.channel_data[channel]


def encode_frame(samples: Sequence[float] | np.ndarray) -> bytes:
    """Scale float samples by 32768 and pack as int16 LE mono.

    Values are truncated toward zero.  +1.0 would land on 32768, one past
    the int16 range, so results saturate at [-32768, 32767].
    """
    scaled = np.trunc(np.asarray(samples, dtype=np.float64) * SCALE)
    clipped = np.clip(scaled, INT16_MIN, INT16_MAX)
    return clipped.astype("<i2").tobytes()


def decode_frame(
    data: bytes,
    sample_rate: int = PLAYBACK_SAMPLE_RATE,
    channels: int = 1,
) -> AudioBuffer:
    """Expand int16 LE PCM into a float32 AudioBuffer (value / 32768).

    Interleaved multi-channel input is split per channel.  A trailing
    partial sample or partial frame is dropped.
    """
    if channels < 1:
        raise ValueError(f"channels must be >= 1, got {channels}")

    usable = len(data) - (len(data) % 2)
    ints = np.frombuffer(data[:usable], dtype="<i2")
    frame_count = len(ints) // channels
    interleaved = ints[: frame_count * channels].reshape(frame_count, channels)
    channel_data = (interleaved.T.astype(np.float32) / SCALE)
    return AudioBuffer(channel_data=np.ascontiguousarray(channel_data), sample_rate=sample_rate)


def pcm_mime_type(sample_rate: int = CAPTURE_SAMPLE_RATE) -> str:
    """MIME type announced for outbound capture frames."""
    return f"audio/pcm;rate={sample_rate}"


def wav_bytes(pcm: bytes, sample_rate: int = PLAYBACK_SAMPLE_RATE) -> bytes:
    """Wrap int16 mono PCM in a 44-byte WAV header."""
    buf = io.BytesIO()
    data_size = len(pcm) - (len(pcm) % 2)
    buf.write(b"RIFF")
    buf.write(struct.pack("<I", 36 + data_size))
    buf.write(b"WAVE")
    buf.write(b"fmt ")
    buf.write(struct.pack("<I", 16))               # chunk size
    buf.write(struct.pack("<H", 1))                # PCM format
    buf.write(struct.pack("<H", 1))                # mono
    buf.write(struct.pack("<I", sample_rate))
    buf.write(struct.pack("<I", sample_rate * 2))  # byte rate
    buf.write(struct.pack("<H", 2))                # block align
    buf.write(struct.pack("<H", 16))               # bits per sample
    buf.write(b"data")
    buf.write(struct.pack("<I", data_size))
    buf.write(pcm[:data_size])
    return buf.getvalue()
