"""Tests for the audio pipeline: capture encoding and playback scheduling.

Playback runs against a fake device with a manually advanced clock so
chunk placement can be checked exactly.
"""

import asyncio
import os
import random
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from caregiver.audio.codec import decode_frame, encode_frame
from caregiver.audio.pipeline import AudioPipeline, PlaybackScheduler
from caregiver.errors import MicrophoneUnavailableError

from fakes import FakeCapture, FakePlayback, eventually

# 2400 samples @ 24kHz = 0.1s
CHUNK = b"\x00\x10" * 2400


async def immediate_decode(data):
    return decode_frame(data)


# ── Scheduling cursor ───────────────────────────────────────────


class TestPlaybackScheduler:
    async def test_chunks_play_back_to_back(self):
        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=immediate_decode)

        handles = [await scheduler.enqueue(CHUNK) for _ in range(3)]

        assert [h.start_time for h in handles] == pytest.approx([0.0, 0.1, 0.2])
        assert scheduler.cursor == pytest.approx(0.3)

    async def test_default_decoder_uses_device_rate(self):
        device = FakePlayback()
        scheduler = PlaybackScheduler(device)

        handle = await scheduler.enqueue(CHUNK)

        assert handle.end_time - handle.start_time == pytest.approx(0.1)

    async def test_late_chunk_starts_now(self):
        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=immediate_decode)
        await scheduler.enqueue(CHUNK)

        device.now = 5.0
        handle = await scheduler.enqueue(CHUNK)

        assert handle.start_time == 5.0
        assert scheduler.cursor == pytest.approx(5.1)

    async def test_cursor_never_decreases(self):
        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=immediate_decode)
        seen = []
        for now in (0.0, 0.05, 0.3, 0.31, 1.0):
            device.now = now
            await scheduler.enqueue(CHUNK)
            seen.append(scheduler.cursor)
        assert seen == sorted(seen)

    async def test_out_of_order_decodes_keep_arrival_order(self):
        rng = random.Random(7)

        async def jittery_decode(data):
            await asyncio.sleep(rng.uniform(0, 0.02))
            return decode_frame(data)

        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=jittery_decode)

        sizes = [rng.randint(1, 4) * 1200 for _ in range(20)]
        chunks = [bytes([i, 0]) * n for i, n in enumerate(sizes)]
        handles = await asyncio.gather(*(scheduler.enqueue(c) for c in chunks))

        assert [h.end_time - h.start_time for h in handles] == pytest.approx(
            [n / 24000 for n in sizes]
        )
        for prev, nxt in zip(handles, handles[1:]):
            assert nxt.start_time == pytest.approx(prev.end_time)
        assert device.handles == list(handles)

    async def test_slow_first_chunk_is_not_overtaken(self):
        release = asyncio.Event()

        async def decode(data):
            if data == b"slow":
                await release.wait()
                return decode_frame(CHUNK)
            return decode_frame(data)

        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=decode)

        first = asyncio.create_task(scheduler.enqueue(b"slow"))
        second = asyncio.create_task(scheduler.enqueue(CHUNK))
        await asyncio.sleep(0.01)
        assert device.handles == []

        release.set()
        h1, h2 = await asyncio.gather(first, second)
        assert h1.start_time == 0.0
        assert h2.start_time == pytest.approx(h1.end_time)


# ── Interruption ────────────────────────────────────────────────


class TestInterrupt:
    async def test_stops_every_handle_and_resets_cursor(self):
        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=immediate_decode)
        for _ in range(3):
            await scheduler.enqueue(CHUNK)

        scheduler.interrupt()

        assert all(h.stopped for h in device.handles)
        assert scheduler.cursor == 0.0
        assert scheduler.active_handles == []

    async def test_next_chunk_starts_at_device_time(self):
        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=immediate_decode)
        await scheduler.enqueue(CHUNK)

        device.now = 1.234
        scheduler.interrupt()
        handle = await scheduler.enqueue(CHUNK)

        assert handle.start_time >= 1.234

    async def test_chunk_decoding_across_interrupt_is_dropped(self):
        release = asyncio.Event()

        async def decode(data):
            await release.wait()
            return decode_frame(data)

        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=decode)

        pending = asyncio.create_task(scheduler.enqueue(CHUNK))
        await asyncio.sleep(0)
        scheduler.interrupt()
        release.set()

        assert await pending is None
        assert device.handles == []

    async def test_failing_stop_does_not_block_others(self):
        device = FakePlayback()
        scheduler = PlaybackScheduler(device, decode=immediate_decode)
        first = await scheduler.enqueue(CHUNK)
        second = await scheduler.enqueue(CHUNK)

        def boom():
            raise RuntimeError("device gone")

        first.stop = boom
        scheduler.interrupt()

        assert second.stopped
        assert scheduler.cursor == 0.0


# ── Pipeline lifecycle ──────────────────────────────────────────


class TestAudioPipeline:
    async def test_open_acquires_both_devices(self):
        capture, playback = FakeCapture(), FakePlayback()
        pipeline = AudioPipeline(capture, playback)

        await pipeline.open()

        assert capture.opened and playback.opened
        assert not pipeline.closed

    async def test_capture_failure_releases_everything(self):
        capture = FakeCapture(error=MicrophoneUnavailableError.denied())
        playback = FakePlayback()
        pipeline = AudioPipeline(capture, playback)

        with pytest.raises(MicrophoneUnavailableError):
            await pipeline.open()

        assert pipeline.closed
        assert capture.close_calls == 1
        assert playback.close_calls == 1

    async def test_close_during_open_releases_late_devices(self):
        capture, playback = FakeCapture(delay=0.05), FakePlayback()
        pipeline = AudioPipeline(capture, playback)

        opening = asyncio.create_task(pipeline.open())
        await asyncio.sleep(0.01)
        await pipeline.close()
        await opening

        assert pipeline.closed
        assert not capture.opened
        assert not playback.opened

    async def test_captured_frames_are_encoded_in_order(self):
        capture = FakeCapture()
        pipeline = AudioPipeline(capture, FakePlayback())
        await pipeline.open()

        frames = [np.full(2048, v, dtype=np.float32) for v in (0.1, -0.2, 0.3)]
        for f in frames:
            capture.push(f)

        received = []

        async def consume():
            async for pcm in pipeline.captured_frames():
                received.append(pcm)

        task = asyncio.create_task(consume())
        await eventually(lambda: len(received) == 3)
        await pipeline.close()
        await task

        assert received == [encode_frame(f) for f in frames]

    async def test_close_is_idempotent(self):
        capture, playback = FakeCapture(), FakePlayback()
        pipeline = AudioPipeline(capture, playback)
        await pipeline.open()

        await pipeline.close()
        await pipeline.close()

        assert capture.close_calls == 1
        assert playback.close_calls == 1

    async def test_close_releases_capture_when_playback_fails(self):
        capture = FakeCapture()
        playback = FakePlayback(close_error=RuntimeError("busy"))
        pipeline = AudioPipeline(capture, playback)
        await pipeline.open()

        await pipeline.close()

        assert capture.close_calls == 1
        assert pipeline.closed

    async def test_close_stops_scheduled_playback(self):
        playback = FakePlayback()
        pipeline = AudioPipeline(FakeCapture(), playback, decode=immediate_decode)
        await pipeline.open()
        await pipeline.play(CHUNK)
        await pipeline.play(CHUNK)

        await pipeline.close()

        assert all(h.stopped for h in playback.handles)

    async def test_reopen_after_close(self):
        capture, playback = FakeCapture(), FakePlayback()
        pipeline = AudioPipeline(capture, playback)
        async with pipeline.opened():
            pass
        assert pipeline.closed

        await pipeline.open()
        assert not pipeline.closed
        assert capture.opened
