#!/usr/bin/env python3
"""Local Piper TTS provider with an on-disk phrase cache."""

import hashlib
import os
import time
from pathlib import Path
from typing import Any, Optional, Tuple

import numpy as np

from stemvoice import PROJECT_ROOT
from stemvoice.utils import voice_log

DEFAULT_MODEL = os.path.join(PROJECT_ROOT, "piper-models", "en_US-lessac-medium.onnx")


class PiperTTS:
    """Piper voice with .npz caching.

    Feedback phrases repeat a lot ("Cancelled.", the terms summary), so most
    utterances after the first are served from disk.
    """

    def __init__(self, model_path: str = None, cache_dir: str = None):
        from piper import PiperVoice

        model_path = model_path or DEFAULT_MODEL
        voice_log("TTS", f"Loading Piper model: {model_path}")
        start = time.time()
        self.voice = PiperVoice.load(model_path)
        voice_log("TTS", f"Model loaded in {time.time() - start:.2f}s")
        self.sample_rate = int(getattr(getattr(self.voice, "config", None), "sample_rate", 22050))

        self.cache_dir = Path(cache_dir or os.path.join(PROJECT_ROOT, "tts_cache"))
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _cache_path(self, text: str) -> Path:
        key = hashlib.md5(text.lower().strip().encode("utf-8")).hexdigest()
        return self.cache_dir / f"{key}.npz"

    def _load_from_cache(self, path: Path) -> Tuple[Optional[np.ndarray], int]:
        if not path.exists():
            return None, 0
        try:
            data = np.load(path)
            return data["audio"], int(data["sample_rate"])
        except (OSError, ValueError, KeyError) as e:
            voice_log("TTS", f"Cache load error: {e}", level="ERROR")
            return None, 0

    def _save_to_cache(self, path: Path, audio: np.ndarray, sample_rate: int):
        try:
            np.savez_compressed(path, audio=audio, sample_rate=sample_rate)
        except OSError as e:
            voice_log("TTS", f"Cache save error: {e}", level="ERROR")

    def synthesize(self, text: str, use_cache: bool = True, **kwargs: Any) -> Tuple[Optional[np.ndarray], int]:
        if not text or not text.strip():
            return None, self.sample_rate
        text = text.strip()

        path = self._cache_path(text)
        if use_cache:
            audio, sr = self._load_from_cache(path)
            if audio is not None:
                return audio, sr

        start = time.time()
        chunks = [np.frombuffer(chunk.audio_int16_bytes, dtype=np.int16) for chunk in self.voice.synthesize(text)]
        if not chunks:
            return None, self.sample_rate

        audio = np.concatenate(chunks).astype(np.float32) / 32767.0
        duration = len(audio) / self.sample_rate
        voice_log("TTS", f"Generated {duration:.2f}s audio in {time.time() - start:.2f}s", level="DEBUG")

        if use_cache:
            self._save_to_cache(path, audio, self.sample_rate)
        return audio, self.sample_rate
