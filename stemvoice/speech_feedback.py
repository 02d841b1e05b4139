#!/usr/bin/env python3
"""Spoken feedback with a speaking flag for self-trigger suppression."""

import threading
from typing import Optional

from stemvoice.event_bus import EventBus, EventType
from stemvoice.tts.base import SpeechSynthesizer
from stemvoice.utils import voice_log


class SpeechFeedbackEmitter:
    """Wraps a SpeechSynthesizer; at most one utterance in flight.

    speak() cancels whatever is playing and starts the new text. The
    speaking flag follows the latest utterance only: callbacks from a
    cancelled utterance are ignored by token.
    """

    def __init__(self, synthesizer: Optional[SpeechSynthesizer], bus: Optional[EventBus] = None):
        self._synth = synthesizer
        self._bus = bus
        self._lock = threading.Lock()
        self._token = 0
        self._speaking = False

    @property
    def is_speaking(self) -> bool:
        with self._lock:
            return self._speaking

    def speak(self, text: str):
        if not text:
            return
        with self._lock:
            self._token += 1
            token = self._token
            self._speaking = False

        if self._synth is None:
            voice_log("TTS", f"(muted) {text}")
            return

        voice_log("TTS", f"Speaking: {text[:60]}")
        self._synth.cancel()
        try:
            self._synth.speak(
                text,
                on_start=lambda: self._on_start(token),
                on_end=lambda: self._on_finish(token, None),
                on_error=lambda e: self._on_finish(token, e),
            )
        except Exception as e:
            voice_log("TTS", f"Synthesizer rejected utterance: {e}", level="ERROR")
            self._on_finish(token, e)

    def cancel(self):
        """Silence the current utterance and clear the speaking flag."""
        with self._lock:
            self._token += 1
            was_speaking = self._speaking
            self._speaking = False
        if self._synth is not None:
            self._synth.cancel()
        if was_speaking:
            self._publish(EventType.TTS_ENDED)

    def _on_start(self, token: int):
        with self._lock:
            if token != self._token:
                return
            self._speaking = True
        self._publish(EventType.TTS_STARTED)

    def _on_finish(self, token: int, error: Optional[Exception]):
        with self._lock:
            if token != self._token:
                return
            self._speaking = False
        if error is not None:
            voice_log("TTS", f"Utterance failed: {error}", level="WARNING")
        self._publish(EventType.TTS_ENDED)

    def _publish(self, event_type: EventType):
        if self._bus is not None:
            self._bus.publish(event_type, source="speech_feedback")
