"""Audio device adapters: local sound card and browser WebSocket."""

from .base import CaptureDevice, PlaybackDevice, PlaybackHandle

__all__ = ["CaptureDevice", "PlaybackDevice", "PlaybackHandle"]
