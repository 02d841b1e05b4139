#!/usr/bin/env python3
"""Speaker output: synthesized feedback and the activation chime."""

import threading
import time
from typing import Callable, Optional

from stemvoice.tts.base import TTSProvider, coerce_audio, generate_tone
from stemvoice.utils import voice_log

CHIME_FREQ = 1000
CHIME_DURATION = 0.05
CHIME_SAMPLE_RATE = 44100


class SoundDeviceSynthesizer:
    """SpeechSynthesizer that renders with a TTSProvider and plays via sounddevice.

    One worker thread per utterance. cancel() bumps the generation and
    stops the output stream; the superseded worker exits its poll loop and
    reports nothing.
    """

    POLL_INTERVAL = 0.05

    def __init__(self, provider: TTSProvider, output_device: Optional[str] = None):
        self.provider = provider
        self.output_device = output_device
        self._generation = 0
        self._lock = threading.Lock()
        self._sd_play_lock = threading.Lock()

    def speak(
        self,
        text: str,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        with self._lock:
            self._generation += 1
            generation = self._generation
        self._stop_output()

        threading.Thread(
            target=self._run,
            args=(generation, text, on_start, on_end, on_error),
            name="FeedbackSpeech",
            daemon=True,
        ).start()

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
        self._stop_output()

    def _current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _stop_output(self):
        import sounddevice as sd
        try:
            sd.stop()
        except sd.PortAudioError as e:
            voice_log("TTS", f"Stop failed: {e}", level="WARNING")

    def _run(self, generation, text, on_start, on_end, on_error):
        import sounddevice as sd
        try:
            audio, sample_rate = self.provider.synthesize(text)
            if not self._current(generation):
                return
            if audio is None or not sample_rate:
                raise RuntimeError(f"Synthesis produced no audio for {text[:40]!r}")
            audio = coerce_audio(audio)
            duration_s = len(audio) / float(sample_rate)

            on_start()
            with self._sd_play_lock:
                sd.play(audio, sample_rate, device=self.output_device)
                started = time.monotonic()
                while time.monotonic() - started < duration_s + 2.0:
                    if not self._current(generation):
                        voice_log("TTS", "Utterance cancelled", level="DEBUG")
                        return
                    try:
                        stream = sd.get_stream()
                    except RuntimeError:
                        break
                    if stream is None or not stream.active:
                        break
                    time.sleep(self.POLL_INTERVAL)
                else:
                    voice_log("TTS", f"Playback hard-timeout after {duration_s + 2.0:.2f}s", level="WARNING")
                    sd.stop()

            if self._current(generation):
                on_end()
        except Exception as e:
            voice_log("TTS", f"Speech failed: {e}", level="ERROR")
            if self._current(generation):
                on_error(e)


def play_activation_chime(output_device: Optional[str] = None):
    """Short 1 kHz blip marking the session going online. Non-blocking."""
    import sounddevice as sd
    tone = generate_tone(CHIME_FREQ, CHIME_DURATION, CHIME_SAMPLE_RATE, volume=0.3)
    try:
        sd.play(tone, CHIME_SAMPLE_RATE, device=output_device)
    except sd.PortAudioError as e:
        voice_log("TTS", f"Activation chime failed: {e}", level="WARNING")
