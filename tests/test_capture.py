"""Tests for the audio capture pipeline (no real audio device is opened)."""

import os
import sys
import types

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest

from stemvoice.capture import AudioCapturePipeline, CaptureDenied


class FakePortAudioError(Exception):
    pass


class FakeStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


@pytest.fixture
def fake_sd(monkeypatch):
    module = types.SimpleNamespace(PortAudioError=FakePortAudioError, streams=[], fail=None)

    def input_stream(**kwargs):
        if module.fail is not None:
            raise module.fail
        stream = FakeStream(**kwargs)
        module.streams.append(stream)
        return stream

    module.InputStream = input_stream
    monkeypatch.setitem(sys.modules, "sounddevice", module)
    return module


class TestAcquire:
    def test_opens_int16_stream_with_chunk_blocksize(self, fake_sd):
        pipeline = AudioCapturePipeline(sample_rate=16000, chunk_interval=0.25, device="2")
        pipeline.acquire()
        stream = fake_sd.streams[0]
        assert stream.kwargs["blocksize"] == 4000
        assert stream.kwargs["dtype"] == np.int16
        assert stream.kwargs["device"] == 2
        assert not stream.started

    def test_denied(self, fake_sd):
        fake_sd.fail = FakePortAudioError("Error querying device -1")
        pipeline = AudioCapturePipeline()
        with pytest.raises(CaptureDenied):
            pipeline.acquire()
        assert not pipeline.acquired

    def test_start_before_acquire(self):
        with pytest.raises(CaptureDenied):
            AudioCapturePipeline().start(lambda chunk: None)

    def test_stop_releases_once(self, fake_sd):
        pipeline = AudioCapturePipeline()
        pipeline.acquire()
        pipeline.start(lambda chunk: None)
        pipeline.stop()
        pipeline.stop()
        assert fake_sd.streams[0].closed
        assert not pipeline.acquired


class TestChunks:
    def test_non_empty_chunks_forwarded(self, fake_sd):
        received = []
        pipeline = AudioCapturePipeline()
        pipeline.acquire()
        pipeline.start(received.append)
        block = np.ones((4, 1), dtype=np.int16)
        pipeline._audio_callback(block, 4, None, None)
        assert received == [block.tobytes()]

    def test_empty_chunks_dropped(self, fake_sd):
        received = []
        pipeline = AudioCapturePipeline()
        pipeline.acquire()
        pipeline.start(received.append)
        pipeline._audio_callback(np.zeros((0, 1), dtype=np.int16), 0, None, None)
        assert received == []
        assert pipeline.chunks_dropped == 1

    def test_no_delivery_after_stop(self, fake_sd):
        received = []
        pipeline = AudioCapturePipeline()
        pipeline.acquire()
        pipeline.start(received.append)
        pipeline.stop()
        pipeline._audio_callback(np.ones((4, 1), dtype=np.int16), 4, None, None)
        assert received == []
