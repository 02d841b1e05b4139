"""Shared fakes: timers, clock, capture, channel, synthesizer, host, library."""

import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stemvoice.config_loader import VoiceConfig
from stemvoice.event_bus import EventBus
from stemvoice.capture import CaptureDenied
from stemvoice.library import DeliveredFile, Layer, Song
from stemvoice.transport import Transcript


class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = list(args or [])
        self.kwargs = dict(kwargs or {})
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        """Run the callback the way threading.Timer would after the interval."""
        if self.started and not self.cancelled:
            self.function(*self.args, **self.kwargs)


class TimerRecorder:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    def live(self, interval=None):
        return [
            tm for tm in self.timers
            if tm.started and not tm.cancelled and (interval is None or tm.interval == interval)
        ]


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeCapture:
    def __init__(self, deny=False):
        self.deny = deny
        self.acquired = False
        self.on_chunk = None
        self.stop_calls = 0

    def acquire(self):
        if self.deny:
            raise CaptureDenied("Permission denied")
        self.acquired = True

    def start(self, on_chunk):
        self.on_chunk = on_chunk

    def stop(self):
        self.stop_calls += 1
        self.acquired = False
        self.on_chunk = None

    def emit(self, chunk):
        if self.on_chunk is not None:
            self.on_chunk(chunk)


class FakeChannel:
    """Stands in for TranscriptionChannel; the test drives the server side."""

    def __init__(self, url, on_open=None, on_transcript=None, on_failure=None, on_close=None):
        self.url = url
        self.callbacks = dict(on_open=on_open, on_transcript=on_transcript,
                              on_failure=on_failure, on_close=on_close)
        self.opened = False
        self.is_open = False
        self.sent = []
        self.close_calls = 0

    def open(self):
        self.opened = True

    def send_chunk(self, data):
        if not self.is_open or not data:
            return False
        self.sent.append(data)
        return True

    def close(self):
        self.close_calls += 1
        self.is_open = False

    # Server side
    def server_open(self):
        self.is_open = True
        self.callbacks["on_open"](self)

    def deliver(self, text, final=True):
        self.callbacks["on_transcript"](self, Transcript(text=text, is_final=final))

    def fail(self, failure):
        self.is_open = False
        self.callbacks["on_failure"](self, failure)

    def server_close(self):
        self.is_open = False
        self.callbacks["on_close"](self)


class ChannelRecorder:
    def __init__(self):
        self.channels = []

    def __call__(self, url, **callbacks):
        channel = FakeChannel(url, **callbacks)
        self.channels.append(channel)
        return channel

    @property
    def last(self):
        return self.channels[-1]


class FakeSynthesizer:
    """Records utterances; the test decides when playback starts and ends."""

    def __init__(self):
        self.spoken = []
        self.cancel_calls = 0
        self._current = None

    def speak(self, text, on_start, on_end, on_error):
        self.spoken.append(text)
        self._current = (on_start, on_end, on_error)

    def cancel(self):
        self.cancel_calls += 1

    def begin(self):
        self._current[0]()

    def finish(self):
        self._current[1]()

    def error(self, exc=None):
        self._current[2](exc or RuntimeError("audio device busy"))

    @property
    def last(self):
        return self.spoken[-1] if self.spoken else None


@pytest.fixture
def imagine():
    return Song(
        id="song-1",
        title="Imagine",
        layers=[
            Layer("vocals", "Vocals"),
            Layer("drums", "Drums"),
            Layer("bass", "Bass"),
            Layer("other", "Other"),
            Layer("original", "Original Audio"),
        ],
        files=[
            DeliveredFile("imagine/vocals.wav"),
            DeliveredFile("imagine/drums.wav"),
            DeliveredFile("imagine/bass.wav"),
            DeliveredFile("imagine/other.wav"),
            DeliveredFile("imagine/original.mp3"),
        ],
    )


@pytest.fixture
def yesterday():
    return Song(
        id="song-2",
        title="Yesterday",
        layers=[Layer("vocals", "Vocals"), Layer("drums", "Drums")],
        files=[DeliveredFile("yesterday/vocals.wav")],
    )


@pytest.fixture
def songs(imagine, yesterday):
    return [imagine, yesterday]


@pytest.fixture
def host(songs):
    mock = MagicMock()
    mock.songs.return_value = songs
    mock.file_selected.return_value = False
    mock.picker_available.return_value = True
    return mock


@pytest.fixture
def config():
    return VoiceConfig(api_base="http://voice.test:8000")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def timers():
    return TimerRecorder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def channels():
    return ChannelRecorder()


@pytest.fixture
def synth():
    return FakeSynthesizer()


@pytest.fixture
def make_controller(config, host, bus, timers, clock, capture, channels, synth):
    from stemvoice.session import SessionController

    created = []

    def _make(cfg=None, **overrides):
        kwargs = dict(
            synthesizer=synth,
            bus=bus,
            capture_factory=lambda: capture,
            channel_factory=channels,
            timer_factory=timers,
            clock=clock,
            chime=MagicMock(),
        )
        kwargs.update(overrides)
        controller = SessionController(cfg or config, host, **kwargs)
        created.append(controller)
        return controller

    yield _make
    for controller in created:
        controller.close()


@pytest.fixture
def online(make_controller, channels):
    """Controller with an open channel and running capture."""
    controller = make_controller()
    assert controller.start() is True
    channels.last.server_open()
    return controller
