"""Audio codec and capture/playback pipeline for the voice assistant."""

from .codec import AudioBuffer, decode_frame, encode_frame
from .pipeline import AudioPipeline, PlaybackScheduler

__all__ = [
    "AudioBuffer",
    "AudioPipeline",
    "PlaybackScheduler",
    "decode_frame",
    "encode_frame",
]
