#!/usr/bin/env python3
"""Microphone capture: fixed-cadence PCM chunks for the transcription stream."""

import threading
import time
from typing import Callable, Optional, Union

import numpy as np

from stemvoice.utils import voice_log


class CaptureDenied(Exception):
    """The input device could not be opened."""


def _device_arg(device: Optional[str]) -> Optional[Union[int, str]]:
    if device is None or str(device).strip() == "":
        return None
    device = str(device).strip()
    return int(device) if device.isdigit() else device


class AudioCapturePipeline:
    """
    Owns one sounddevice InputStream.

    acquire() opens the device (the permission step) without recording.
    start() begins delivering 16-bit little-endian PCM chunks, one per
    chunk_interval, to the given callback on the PortAudio thread. stop()
    releases the device and may be called any number of times.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_interval: float = 0.25,
        device: Optional[str] = None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_interval = chunk_interval
        self.device = _device_arg(device)
        self.blocksize = max(1, int(sample_rate * chunk_interval))

        self._stream = None
        self._on_chunk: Optional[Callable[[bytes], None]] = None
        self._lock = threading.Lock()
        self._last_status_log = 0.0
        self.chunks_emitted = 0
        self.chunks_dropped = 0

    @property
    def acquired(self) -> bool:
        with self._lock:
            return self._stream is not None

    def acquire(self):
        """Open the input device.

        Raises:
            CaptureDenied: no usable input device, or access refused
        """
        import sounddevice as sd

        with self._lock:
            if self._stream is not None:
                return
            try:
                self._stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype=np.int16,
                    blocksize=self.blocksize,
                    device=self.device,
                    callback=self._audio_callback,
                )
            except (sd.PortAudioError, OSError, ValueError) as e:
                raise CaptureDenied(str(e)) from e
        voice_log("CAPTURE", f"Input device opened ({self.sample_rate} Hz, {self.blocksize} frames/chunk)")

    def start(self, on_chunk: Callable[[bytes], None]):
        """Begin recording; every non-empty chunk goes to on_chunk."""
        with self._lock:
            if self._stream is None:
                raise CaptureDenied("Capture started before the device was acquired")
            self._on_chunk = on_chunk
            stream = self._stream
        stream.start()
        voice_log("CAPTURE", "Recording")

    def stop(self):
        """Stop recording and release the device. Idempotent."""
        with self._lock:
            stream, self._stream = self._stream, None
            self._on_chunk = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            voice_log("CAPTURE", f"Error releasing input device: {e}", level="WARNING")
        voice_log("CAPTURE", f"Released ({self.chunks_emitted} chunks sent, {self.chunks_dropped} empty)")

    def _audio_callback(self, indata, frames, time_info, status):
        if status:
            now = time.time()
            if now - self._last_status_log >= 1.0:
                voice_log("CAPTURE", f"Audio status: {status}", level="WARNING")
                self._last_status_log = now

        with self._lock:
            on_chunk = self._on_chunk
        if on_chunk is None:
            return

        payload = indata.tobytes() if frames else b""
        if not payload:
            self.chunks_dropped += 1
            return
        self.chunks_emitted += 1
        on_chunk(payload)
