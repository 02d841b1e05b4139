#!/usr/bin/env python3
"""
Duplex transcription stream.

Binary PCM frames go out, JSON transcripts come back:

    {"transcript": "play vocals from imagine", "isFinal": true}

Anything else inbound is logged and dropped. The socket runs on a
websocket-client WebSocketApp in a daemon thread; events are reported to the
owner through callbacks that receive the channel itself, so the owner can
tell a current channel from a stale one.
"""

import json
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.parse import urlparse, urlunparse

from stemvoice.utils import voice_log

SCHEME_UPGRADES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


@dataclass
class Transcript:
    text: str
    is_final: bool
    received_at: float = field(default_factory=time.time)


class TransportFailure(Exception):
    """Transport error; unreachable is set for refused/unresolvable hosts."""

    def __init__(self, message: str, unreachable: bool = False):
        super().__init__(message)
        self.unreachable = unreachable


class InitialConnectFailure(TransportFailure):
    """The channel never reached open."""


class MidSessionFailure(TransportFailure):
    """The channel failed after it had opened."""


def build_ws_url(api_base: str, path: str = "/ws/transcribe") -> str:
    """Streaming URL for the transcription endpoint.

    'https://api.example.com/v1' -> 'wss://api.example.com/v1/ws/transcribe'
    """
    base = (api_base or "").strip()
    if "://" not in base:
        base = "http://" + base
    parsed = urlparse(base)
    scheme = SCHEME_UPGRADES.get(parsed.scheme.lower(), "ws")
    if not path.startswith("/"):
        path = "/" + path
    full_path = parsed.path.rstrip("/") + path
    return urlunparse((scheme, parsed.netloc, full_path, "", "", ""))


def parse_transcript_message(raw: Any) -> Optional[Transcript]:
    """Transcript from an inbound frame, or None if it has the wrong shape."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    text = data.get("transcript")
    is_final = data.get("isFinal")
    if not isinstance(text, str) or not isinstance(is_final, bool):
        return None
    return Transcript(text=text, is_final=is_final)


def _is_unreachable(error: Any) -> bool:
    if isinstance(error, (ConnectionRefusedError, socket.gaierror)):
        return True
    text = str(error).lower()
    return "refused" in text or "name or service not known" in text


def _default_app_factory(url, **callbacks):
    import websocket
    return websocket.WebSocketApp(url, **callbacks)


class TranscriptionChannel:
    """
    One streaming connection to the transcription service.

    Callbacks (all optional, all called from the socket thread):
        on_open(channel)
        on_transcript(channel, Transcript)
        on_failure(channel, TransportFailure)
        on_close(channel)

    After close() no further callbacks are delivered.
    """

    def __init__(
        self,
        url: str,
        on_open: Optional[Callable] = None,
        on_transcript: Optional[Callable] = None,
        on_failure: Optional[Callable] = None,
        on_close: Optional[Callable] = None,
        ping_interval: float = 20.0,
        ping_timeout: float = 10.0,
        app_factory: Callable[..., Any] = _default_app_factory,
    ):
        self.url = url
        self._on_open = on_open
        self._on_transcript = on_transcript
        self._on_failure = on_failure
        self._on_close = on_close
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._app_factory = app_factory

        self._ws = None
        self._ws_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._opened = False   # reached open at least once
        self._is_open = False  # open right now
        self._closed = False   # close() called
        self.frames_sent = 0
        self.messages_dropped = 0

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._is_open and not self._closed

    def open(self):
        """Start connecting. Returns immediately; on_open reports success."""
        with self._lock:
            if self._ws is not None or self._closed:
                return
            voice_log("TRANSPORT", f"Connecting to {self.url}")
            self._ws = self._app_factory(
                self.url,
                on_open=self._handle_open,
                on_message=self._handle_message,
                on_error=self._handle_error,
                on_close=self._handle_close,
            )
            ws = self._ws

        self._ws_thread = threading.Thread(
            target=lambda: ws.run_forever(
                ping_interval=max(0.0, float(self.ping_interval)),
                ping_timeout=max(1.0, float(self.ping_timeout)),
            ),
            name="TranscriptionChannel",
            daemon=True,
        )
        self._ws_thread.start()

    def send_chunk(self, data: bytes) -> bool:
        """Send one audio chunk. Dropped (False) unless the channel is open."""
        if not data:
            return False
        with self._lock:
            if not self._is_open or self._closed:
                return False
            ws = self._ws
        import websocket
        try:
            ws.send(data, opcode=websocket.ABNF.OPCODE_BINARY)
        except (websocket.WebSocketException, OSError) as e:
            voice_log("TRANSPORT", f"Chunk dropped: {e}", level="DEBUG")
            return False
        self.frames_sent += 1
        return True

    def close(self):
        """Close the socket. Idempotent, callable from any thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._is_open = False
            ws, thread = self._ws, self._ws_thread
        if ws is not None:
            try:
                ws.close()
            except Exception as e:
                voice_log("TRANSPORT", f"Error while closing: {e}", level="WARNING")
        # Never join from inside our own socket callbacks
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=2.0)
        voice_log("TRANSPORT", f"Closed ({self.frames_sent} frames sent)")

    # ── WebSocketApp callbacks ──────────────────────────────────────

    def _handle_open(self, ws):
        with self._lock:
            if self._closed:
                return
            self._opened = True
            self._is_open = True
        voice_log("TRANSPORT", "Channel open")
        if self._on_open:
            self._on_open(self)

    def _handle_message(self, ws, message):
        with self._lock:
            if self._closed:
                return
        transcript = parse_transcript_message(message)
        if transcript is None:
            self.messages_dropped += 1
            voice_log("TRANSPORT", f"Malformed message dropped: {str(message)[:80]!r}", level="WARNING")
            return
        if self._on_transcript:
            self._on_transcript(self, transcript)

    def _handle_error(self, ws, error):
        with self._lock:
            if self._closed:
                return
            was_open = self._opened
            self._is_open = False
        failure_cls = MidSessionFailure if was_open else InitialConnectFailure
        failure = failure_cls(str(error), unreachable=_is_unreachable(error))
        voice_log("TRANSPORT", f"{failure_cls.__name__}: {error}", level="ERROR")
        if self._on_failure:
            self._on_failure(self, failure)

    def _handle_close(self, ws, close_status_code=None, close_msg=None):
        with self._lock:
            if self._closed:
                return
            self._is_open = False
        voice_log("TRANSPORT", f"Connection closed by server: {close_status_code} - {close_msg}")
        if self._on_close:
            self._on_close(self)
