"""
Signal bus between the voice controller and the host application.

The set of signals is closed: every EventType has a SignalSpec saying who
raises it and which payload keys it carries. Publishers build payloads with
the helpers below (select_stem(), transcript(), ...) so the shapes on the
wire stay the ones the host listens for.

Until start() is called, publish() dispatches on the caller's thread. Once
started, a single worker drains a bounded queue; handlers subscribed with
async_mode=True get their own thread.
"""

import itertools
import queue
import threading
import time
import traceback
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from stemvoice.utils import voice_log


class EventType(str, Enum):
    """Signals and lifecycle events on the bus."""
    # Raised by the voice controller
    VOICE_TRIGGER_SPLIT = "voice-trigger-split"
    VOICE_VIEW_TOS = "voice-view-tos"
    VOICE_SELECT_STEM = "voice-select-stem"
    OPEN_SIDEBAR = "open-sidebar"

    # Raised by the host, consumed by the voice controller
    FILE_SELECTED = "file-selected"
    TOS_AGREED = "tos-agreed"
    VOICE_SPLIT_SUCCESS = "voice-split-success"

    # Session lifecycle
    SESSION_STATE_CHANGED = "session-state-changed"
    TRANSCRIPT_RECEIVED = "transcript-received"
    COMMAND_MATCHED = "command-matched"
    FLOW_CHANGED = "flow-changed"

    # TTS
    TTS_STARTED = "tts-started"
    TTS_ENDED = "tts-ended"

    # Errors
    ERROR_CAPTURE = "error-capture"
    ERROR_TRANSPORT = "error-transport"


class Origin:
    VOICE = "voice"
    HOST = "host"
    LIFECYCLE = "lifecycle"


@dataclass(frozen=True)
class SignalSpec:
    origin: str
    payload_keys: Tuple[str, ...] = ()


SIGNALS: Dict[EventType, SignalSpec] = {
    EventType.VOICE_TRIGGER_SPLIT: SignalSpec(Origin.VOICE),
    EventType.VOICE_VIEW_TOS: SignalSpec(Origin.VOICE),
    EventType.VOICE_SELECT_STEM: SignalSpec(Origin.VOICE, ("stemId",)),
    EventType.OPEN_SIDEBAR: SignalSpec(Origin.VOICE),
    EventType.FILE_SELECTED: SignalSpec(Origin.HOST),
    EventType.TOS_AGREED: SignalSpec(Origin.HOST),
    EventType.VOICE_SPLIT_SUCCESS: SignalSpec(Origin.HOST),
    EventType.SESSION_STATE_CHANGED: SignalSpec(Origin.LIFECYCLE, ("state",)),
    EventType.TRANSCRIPT_RECEIVED: SignalSpec(Origin.LIFECYCLE, ("text", "isFinal")),
    EventType.COMMAND_MATCHED: SignalSpec(Origin.LIFECYCLE, ("kind", "text")),
    EventType.FLOW_CHANGED: SignalSpec(Origin.LIFECYCLE, ("flow",)),
    EventType.TTS_STARTED: SignalSpec(Origin.LIFECYCLE),
    EventType.TTS_ENDED: SignalSpec(Origin.LIFECYCLE),
    EventType.ERROR_CAPTURE: SignalSpec(Origin.LIFECYCLE, ("reason",)),
    EventType.ERROR_TRANSPORT: SignalSpec(Origin.LIFECYCLE, ("kind", "unreachable", "message")),
}


# ── Payload builders ────────────────────────────────────────────────

def select_stem(stem_id: str) -> Dict[str, Any]:
    """Payload for voice-select-stem: a stem id, 'all' or 'none'."""
    return {"stemId": stem_id}


def session_state(state: str) -> Dict[str, Any]:
    return {"state": state}


def transcript(text: str, is_final: bool) -> Dict[str, Any]:
    return {"text": text, "isFinal": is_final}


def command_matched(kind: str, text: str) -> Dict[str, Any]:
    return {"kind": kind, "text": text}


def flow_changed(flow: str) -> Dict[str, Any]:
    return {"flow": flow}


def capture_error(reason: str) -> Dict[str, Any]:
    return {"reason": reason}


def transport_error(kind: str, unreachable: bool, message: str) -> Dict[str, Any]:
    return {"kind": kind, "unreachable": unreachable, "message": message}


# ── Bus ─────────────────────────────────────────────────────────────

@dataclass
class Event:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    source: str = "unknown"
    seq: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def origin(self) -> str:
        return SIGNALS[self.type].origin

    def get(self, key: str, default=None):
        return self.payload.get(key, default)

    def __repr__(self):
        return f"Event(#{self.seq} {self.type.value} from {self.source})"


@dataclass
class _Subscription:
    handler_id: int
    event_type: EventType
    callback: Callable[[Event], None]
    async_mode: bool


def _check_payload(event_type: EventType, payload: Dict[str, Any]):
    missing = [key for key in SIGNALS[event_type].payload_keys if key not in payload]
    if missing:
        raise ValueError(f"{event_type.value} payload missing {', '.join(missing)}")


class EventBus:
    """Typed pub/sub for the signals in SIGNALS."""

    def __init__(self, max_queue_size: int = 1000, history_size: int = 50):
        self._subscriptions: Dict[EventType, List[_Subscription]] = {}
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._ids = itertools.count(1)
        self._seq = itertools.count(1)

        self._published: Counter = Counter()
        self._dispatched = 0
        self._dropped = 0
        self._handler_errors = 0
        self._history: Deque[Event] = deque(maxlen=history_size)

        self._lock = threading.RLock()

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Move dispatch onto the worker thread."""
        if self._running:
            return
        self._running = True
        self._worker = threading.Thread(target=self._worker_loop, name="SignalBus", daemon=True)
        self._worker.start()
        voice_log("EVENT_BUS", "Started")

    def stop(self):
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put(None, block=False)
        except queue.Full:
            pass
        worker, self._worker = self._worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=2.0)
        voice_log("EVENT_BUS", "Stopped")

    def _worker_loop(self):
        while self._running:
            try:
                event = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            if event is None:
                break
            self._dispatch(event)

    def _dispatch(self, event: Event):
        with self._lock:
            subscriptions = list(self._subscriptions.get(event.type, ()))
            self._dispatched += 1
            self._history.append(event)

        for sub in subscriptions:
            if sub.async_mode:
                threading.Thread(target=self._run_handler, args=(sub, event), daemon=True).start()
            else:
                self._run_handler(sub, event)

    def _run_handler(self, sub: _Subscription, event: Event):
        try:
            sub.callback(event)
        except Exception as e:
            with self._lock:
                self._handler_errors += 1
            voice_log("EVENT_BUS", f"Handler error for {event.type.value}: {e}", level="ERROR")
            voice_log("EVENT_BUS", traceback.format_exc(), level="DEBUG")

    def publish(
        self,
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None,
        source: str = "unknown",
        wait: bool = False,
    ) -> Optional[Event]:
        """
        Raise a signal.

        Args:
            event_type: EventType or its wire name
            payload: Built with one of the payload helpers
            source: Publisher name, for logs
            wait: Dispatch on the caller's thread even when started

        Returns:
            The event, or None if the queue was full

        Raises:
            ValueError: Unknown signal name or missing payload keys
        """
        event_type = EventType(event_type)
        payload = dict(payload or {})
        _check_payload(event_type, payload)

        with self._lock:
            self._published[event_type] += 1
            event = Event(event_type, payload, source, seq=next(self._seq))

        if wait or not self._running:
            self._dispatch(event)
            return event

        try:
            self._queue.put(event, block=False)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            voice_log("EVENT_BUS", f"Queue full, dropped {event_type.value}", level="WARNING")
            return None
        return event

    def subscribe(
        self,
        event_type: EventType,
        callback: Callable[[Event], None],
        async_mode: bool = True,
    ) -> int:
        """Register *callback* for one signal. Handlers run in subscription order."""
        event_type = EventType(event_type)
        with self._lock:
            sub = _Subscription(next(self._ids), event_type, callback, async_mode)
            self._subscriptions.setdefault(event_type, []).append(sub)
        name = getattr(callback, "__name__", repr(callback))
        voice_log("EVENT_BUS", f"{name} listens to {event_type.value}", level="DEBUG")
        return sub.handler_id

    def unsubscribe(self, handler_id: int) -> bool:
        with self._lock:
            for subs in self._subscriptions.values():
                for sub in subs:
                    if sub.handler_id == handler_id:
                        subs.remove(sub)
                        return True
        return False

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "published": sum(self._published.values()),
                "dispatched": self._dispatched,
                "dropped": self._dropped,
                "handler_errors": self._handler_errors,
                "queue_size": self._queue.qsize(),
                "by_signal": {event_type.value: count for event_type, count in self._published.items()},
                "listeners": {
                    event_type.value: len(subs)
                    for event_type, subs in self._subscriptions.items()
                    if subs
                },
            }

    def recent(self, count: int = 10) -> List[Event]:
        """Last *count* dispatched events, oldest first."""
        with self._lock:
            return list(self._history)[-count:]


_event_bus_instance: Optional[EventBus] = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Process-wide bus shared by the controller and the host."""
    global _event_bus_instance
    if _event_bus_instance is None:
        with _event_bus_lock:
            if _event_bus_instance is None:
                _event_bus_instance = EventBus()
    return _event_bus_instance
