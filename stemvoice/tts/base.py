"""Speech-synthesis interfaces shared by the providers and the feedback emitter."""

from typing import Any, Callable, Optional, Protocol, Tuple

import numpy as np


# ── Protocols ───────────────────────────────────────────────────────

class TTSProvider(Protocol):
    """Text to audio samples."""

    def synthesize(
        self,
        text: str,
        use_cache: bool = True,
        **kwargs: Any,
    ) -> Tuple[Optional[np.ndarray], int]:
        """Generate audio from text.

        Returns:
            (audio_array, sample_rate) or (None, 0) on failure.
        """
        ...


class SpeechSynthesizer(Protocol):
    """Asynchronous speak capability.

    speak() returns immediately. Exactly one of on_end / on_error follows
    on_start for every utterance that is not cancelled; a cancelled
    utterance may stay silent.
    """

    def speak(
        self,
        text: str,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None: ...

    def cancel(self) -> None: ...


# ── Helpers ─────────────────────────────────────────────────────────

def coerce_audio(audio_like: Any) -> np.ndarray:
    """Normalize to float32 mono, clip to [-1, 1]."""
    audio = np.asarray(audio_like, dtype=np.float32)
    if audio.ndim > 1:
        audio = np.mean(audio, axis=1)
    peak = float(np.max(np.abs(audio))) if audio.size else 0.0
    if peak > 1.0:
        audio = audio / peak
    return audio


def generate_tone(freq: float, duration: float, sample_rate: int, volume: float = 0.5) -> np.ndarray:
    """Sine tone with a short linear fade at both ends."""
    samples = int(sample_rate * duration)
    t = np.linspace(0, duration, samples, endpoint=False, dtype=np.float32)
    wave = np.sin(2 * np.pi * freq * t)
    fade = max(1, samples // 10)
    envelope = np.ones(samples, dtype=np.float32)
    envelope[:fade] = np.linspace(0, 1, fade)
    envelope[-fade:] = np.linspace(1, 0, fade)
    return (wave * envelope * volume).astype(np.float32)
