#!/usr/bin/env python3
"""
Voice session controller.

Owns the microphone, the transcription channel, the watchdog, the flow
state and the pending action of one listening session. Every event source
(capture thread, socket thread, timers, bus signals, host calls) goes
through this object and its single RLock; all teardown paths end in
_teardown().

Lifecycle:

    Offline --start()--> Connecting --channel open--> Online
       ^                     |                          |
       +---- stop() / failure / close / idle timeout ---+
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from stemvoice.capture import AudioCapturePipeline, CaptureDenied
from stemvoice.commands import Command, CommandKind
from stemvoice.config_loader import VoiceConfig
from stemvoice import event_bus as signals
from stemvoice.event_bus import Event, EventBus, EventType, get_event_bus
from stemvoice.flow import (
    ClearPendingAction,
    ClearTranscript,
    Dispatch,
    FlowContext,
    OpenPicker,
    RaiseSignal,
    SetPendingAction,
    SetStatus,
    Speak,
    StopSession,
    transition,
)
from stemvoice.host import PickerBlocked, VoiceHost
from stemvoice.i18n import t
from stemvoice.library import Song
from stemvoice.speech_feedback import SpeechFeedbackEmitter
from stemvoice.state_machine import (
    IDLE,
    ConnectionState,
    FlowMode,
    FlowState,
    PendingAction,
    PendingKind,
    StemSelectionPrompt,
)
from stemvoice.transport import (
    InitialConnectFailure,
    Transcript,
    TranscriptionChannel,
    TransportFailure,
    build_ws_url,
)
from stemvoice.tts.base import SpeechSynthesizer
from stemvoice.utils import safe_call, voice_log
from stemvoice.watchdog import InactivityWatchdog


@dataclass
class Session:
    connection_state: str = ConnectionState.OFFLINE
    started_at: Optional[float] = None
    last_activity_at: Optional[float] = None


class SessionController:
    """Start/stop/toggle a listening session and react to what it hears."""

    def __init__(
        self,
        config: VoiceConfig,
        host: VoiceHost,
        synthesizer: Optional[SpeechSynthesizer] = None,
        bus: Optional[EventBus] = None,
        capture_factory: Optional[Callable[[], AudioCapturePipeline]] = None,
        channel_factory: Optional[Callable[..., TranscriptionChannel]] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
        chime: Optional[Callable[[], None]] = None,
    ):
        self.config = config
        self.host = host
        self.bus = bus or get_event_bus()
        self.feedback = SpeechFeedbackEmitter(synthesizer, self.bus)
        self.watchdog = InactivityWatchdog(config.idle_timeout, self._on_idle_timeout, timer_factory)
        self.url = build_ws_url(config.api_base, config.transcribe_path)

        self._capture_factory = capture_factory or self._default_capture
        self._channel_factory = channel_factory or self._default_channel
        self._timer_factory = timer_factory
        self._clock = clock
        self._chime = chime

        self._lock = threading.RLock()
        self.session = Session()
        self._flow_state: FlowState = IDLE
        self._pending_action: Optional[PendingAction] = None
        self._capture: Optional[AudioCapturePipeline] = None
        self._channel: Optional[TranscriptionChannel] = None

        self.live_transcript: Optional[str] = None
        self._transcript_shown_at: Optional[float] = None
        self._display_timer: Optional[threading.Timer] = None
        self._display_token = 0
        # Bumped on every teardown; work begun in an older session is dropped
        self._epoch = 0

        self._subscriptions = [
            self.bus.subscribe(EventType.FILE_SELECTED, self._on_file_selected, async_mode=False),
            self.bus.subscribe(EventType.TOS_AGREED, self._on_tos_agreed, async_mode=False),
            self.bus.subscribe(EventType.VOICE_SPLIT_SUCCESS, self._on_split_success, async_mode=False),
        ]

    def _default_capture(self) -> AudioCapturePipeline:
        return AudioCapturePipeline(
            sample_rate=self.config.sample_rate,
            channels=self.config.channels,
            chunk_interval=self.config.chunk_interval,
            device=self.config.input_device,
        )

    def _default_channel(self, url, **callbacks) -> TranscriptionChannel:
        return TranscriptionChannel(
            url,
            ping_interval=self.config.ws_ping_interval,
            ping_timeout=self.config.ws_ping_timeout,
            **callbacks,
        )

    # ── Read-only state ─────────────────────────────────────────────

    @property
    def connection_state(self) -> str:
        with self._lock:
            return self.session.connection_state

    @property
    def flow_state(self) -> FlowState:
        with self._lock:
            return self._flow_state

    @property
    def pending_action(self) -> Optional[PendingAction]:
        with self._lock:
            return self._pending_action

    @property
    def is_active(self) -> bool:
        return self.connection_state != ConnectionState.OFFLINE

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> bool:
        """Acquire the microphone and begin connecting.

        Returns:
            False if the microphone could not be acquired, True otherwise
            (including when a session is already running)
        """
        if self.is_active:
            return True

        capture = self._capture_factory()
        try:
            capture.acquire()
        except CaptureDenied as e:
            voice_log("SESSION", f"Microphone unavailable: {e}", level="ERROR")
            safe_call("SESSION", self.host.notify, t("notice.mic_denied_title"), t("notice.mic_denied"), error=True)
            self.bus.publish(EventType.ERROR_CAPTURE, signals.capture_error(str(e)), source="session")
            return False

        with self._lock:
            if self.session.connection_state != ConnectionState.OFFLINE:
                # Lost a race with another start()
                capture.stop()
                return True
            now = self._clock()
            self.session = Session(ConnectionState.CONNECTING, started_at=now, last_activity_at=now)
            self._capture = capture
            channel = self._channel_factory(
                self.url,
                on_open=self._on_channel_open,
                on_transcript=self._on_transcript,
                on_failure=self._on_channel_failure,
                on_close=self._on_channel_close,
            )
            self._channel = channel

        self._announce_connection(ConnectionState.CONNECTING)
        channel.open()
        return True

    def stop(self):
        """Full teardown. Safe from any thread, any number of times."""
        self._teardown(clear_transcript=True)

    def toggle(self) -> bool:
        """Stop if connecting/online, otherwise start. Returns the start() result or True."""
        if self.is_active:
            self.stop()
            return True
        return self.start()

    def close(self):
        """Stop and detach from the bus."""
        self.stop()
        for handler_id in self._subscriptions:
            self.bus.unsubscribe(handler_id)
        self._subscriptions = []

    def _teardown(self, clear_transcript: bool):
        with self._lock:
            capture, self._capture = self._capture, None
            channel, self._channel = self._channel, None
            previous = self.session.connection_state
            flow_was = self._flow_state
            had_pending = self._pending_action is not None
            had_transcript = self.live_transcript is not None

            self.session = Session()
            self._epoch += 1
            self._flow_state = IDLE
            self._pending_action = None
            if clear_transcript:
                self.live_transcript = None
                self._transcript_shown_at = None
                self._display_token += 1
                display_timer, self._display_timer = self._display_timer, None
            else:
                display_timer = None

        self.watchdog.cancel()
        if display_timer is not None:
            display_timer.cancel()
        if capture is not None:
            capture.stop()
        if channel is not None:
            channel.close()

        if had_pending:
            safe_call("SESSION", self.host.set_pending_action, None)
        if clear_transcript and had_transcript:
            safe_call("SESSION", self.host.clear_transcript)
        if flow_was.mode != FlowMode.IDLE:
            self._publish_flow(IDLE)
        if previous != ConnectionState.OFFLINE:
            voice_log("SESSION", "Offline" + ("" if clear_transcript else " (keeping last transcript)"))
            self._announce_connection(ConnectionState.OFFLINE)

    def _announce_connection(self, state: str):
        safe_call("SESSION", self.host.connection_changed, state)
        self.bus.publish(EventType.SESSION_STATE_CHANGED, signals.session_state(state), source="session")

    def _publish_flow(self, state: FlowState):
        voice_log("FLOW", f"-> {state.mode}")
        self.bus.publish(EventType.FLOW_CHANGED, signals.flow_changed(state.mode), source="session")

    def _is_current(self, channel: TranscriptionChannel) -> bool:
        return channel is not None and channel is self._channel

    # ── Channel callbacks ───────────────────────────────────────────

    def _on_channel_open(self, channel: TranscriptionChannel):
        with self._lock:
            if not self._is_current(channel):
                return
            capture = self._capture

        try:
            capture.start(lambda chunk: self._on_chunk(channel, chunk))
        except Exception as e:
            with self._lock:
                stopped = not self._is_current(channel)
            if stopped:
                voice_log("CAPTURE", f"Session stopped before recording started ({e})", level="DEBUG")
                return
            voice_log("CAPTURE", f"Could not start recording: {e}", level="ERROR")
            safe_call("SESSION", self.host.notify, t("notice.mic_denied_title"), t("notice.mic_denied"), error=True)
            self.bus.publish(EventType.ERROR_CAPTURE, signals.capture_error(str(e)), source="session")
            self.stop()
            return

        with self._lock:
            if not self._is_current(channel):
                return
            self.session.connection_state = ConnectionState.ONLINE
            self.session.last_activity_at = self._clock()
            had_transcript = self.live_transcript is not None
            self.live_transcript = None
            self._transcript_shown_at = None

        voice_log("SESSION", f"Online ({self.url})")
        self.watchdog.reset()
        if had_transcript:
            safe_call("SESSION", self.host.clear_transcript)
        safe_call("SESSION", self.host.set_status, t("status.online"))
        self._announce_connection(ConnectionState.ONLINE)
        if self.config.activation_sound and self._chime is not None:
            safe_call("SESSION", self._chime)

    def _on_chunk(self, channel: TranscriptionChannel, chunk: bytes):
        if not chunk:
            return
        with self._lock:
            if not self._is_current(channel):
                return
        channel.send_chunk(chunk)

    def _on_channel_failure(self, channel: TranscriptionChannel, failure: TransportFailure):
        with self._lock:
            if not self._is_current(channel):
                return
            state = self.session.connection_state

        if state in (ConnectionState.CONNECTING, ConnectionState.ONLINE):
            if failure.unreachable:
                message = t("notice.server_unreachable")
            elif isinstance(failure, InitialConnectFailure):
                message = t("notice.connect_failed")
            else:
                message = t("notice.connection_lost")
            safe_call("SESSION", self.host.notify, t("notice.error_title"), message, error=True)
            self.bus.publish(
                EventType.ERROR_TRANSPORT,
                signals.transport_error(type(failure).__name__, failure.unreachable, str(failure)),
                source="session",
            )
        self.stop()

    def _on_channel_close(self, channel: TranscriptionChannel):
        with self._lock:
            if not self._is_current(channel):
                return
            displaying = self._transcript_displayed()
        # The last utterance stays on screen until its display window ends
        self._teardown(clear_transcript=not displaying)

    def _transcript_displayed(self) -> bool:
        if self.live_transcript is None or self._transcript_shown_at is None:
            return False
        return self._clock() - self._transcript_shown_at < self.config.transcript_display_window

    def _on_idle_timeout(self):
        with self._lock:
            if self.session.connection_state != ConnectionState.ONLINE:
                return
        voice_log("SESSION", "Idle timeout")
        self.stop()

    # ── Transcripts ─────────────────────────────────────────────────

    def _on_transcript(self, channel: TranscriptionChannel, transcript: Transcript):
        text = transcript.text.strip()
        with self._lock:
            if not self._is_current(channel) or not text:
                return
            self.live_transcript = text
            self.session.last_activity_at = self._clock()
            epoch = self._epoch

        self.watchdog.reset()
        safe_call("SESSION", self.host.show_transcript, text, transcript.is_final)
        self.bus.publish(
            EventType.TRANSCRIPT_RECEIVED,
            signals.transcript(text, transcript.is_final),
            source="session",
        )
        if transcript.is_final:
            self._schedule_transcript_clear()
            self._handle_final(text, epoch)

    def handle_final_transcript(self, text: str) -> bool:
        """Run one final utterance through the flow machine and execute its effects.

        Ignored while Offline. If the session stops while the utterance is
        being handled, the flow is left alone and no effects run.

        Returns:
            True if the utterance was consumed by a flow or a command
        """
        with self._lock:
            epoch = self._epoch
        return self._handle_final(text, epoch)

    def _handle_final(self, text: str, epoch: int) -> bool:
        songs = self._songs()
        file_selected = bool(safe_call("SESSION", self.host.file_selected))
        picker_available = safe_call("SESSION", self.host.picker_available) is not False

        with self._lock:
            if epoch != self._epoch or self.session.connection_state == ConnectionState.OFFLINE:
                voice_log("CMD", f"Session ended, dropping {text!r}", level="DEBUG")
                return False
            before = self._flow_state
            ctx = FlowContext(
                now=self._clock(),
                speaking=self.feedback.is_speaking,
                touch_device=self.config.touch_device,
                songs=songs,
                file_selected=file_selected,
                picker_available=picker_available,
                tos_cooldown=self.config.tos_cooldown,
            )
            result = transition(before, text, ctx)
            self._flow_state = result.state

        if result.matched:
            kind = result.command.kind.value if result.command else before.mode
            voice_log("CMD", f"{text!r} -> {kind}")
            safe_call("SESSION", self.host.notify, t("notice.command_title"), text)
            self.bus.publish(EventType.COMMAND_MATCHED, signals.command_matched(kind, text), source="session")
        else:
            voice_log("CMD", f"No match: {text!r}", level="DEBUG")

        if result.state.mode != before.mode:
            self._publish_flow(result.state)

        self._run_effects(result.effects, epoch)
        return result.matched

    def _schedule_transcript_clear(self):
        with self._lock:
            self._transcript_shown_at = self._clock()
            self._display_token += 1
            token = self._display_token
            if self._display_timer is not None:
                self._display_timer.cancel()
            timer = self._timer_factory(
                self.config.transcript_display_window, self._on_display_expired, args=[token]
            )
            timer.daemon = True
            self._display_timer = timer
        timer.start()

    def _on_display_expired(self, token: int):
        with self._lock:
            if token != self._display_token:
                return
            self._display_timer = None
            self.live_transcript = None
            self._transcript_shown_at = None
        safe_call("SESSION", self.host.clear_transcript)

    def _clear_transcript(self):
        with self._lock:
            self._display_token += 1
            display_timer, self._display_timer = self._display_timer, None
            self.live_transcript = None
            self._transcript_shown_at = None
        if display_timer is not None:
            display_timer.cancel()
        safe_call("SESSION", self.host.clear_transcript)

    def _songs(self) -> List[Song]:
        return list(safe_call("SESSION", self.host.songs) or [])

    # ── Effects ─────────────────────────────────────────────────────

    def _run_effects(self, effects, epoch: int):
        for effect in effects:
            with self._lock:
                if epoch != self._epoch:
                    voice_log("SESSION", f"Session ended, skipping {effect!r}", level="DEBUG")
                    return
            if isinstance(effect, Speak):
                self.feedback.speak(effect.text)
            elif isinstance(effect, SetStatus):
                safe_call("SESSION", self.host.set_status, effect.text)
            elif isinstance(effect, RaiseSignal):
                self.bus.publish(effect.event_type, dict(effect.payload), source="voice")
            elif isinstance(effect, Dispatch):
                self._dispatch(effect.command)
            elif isinstance(effect, OpenPicker):
                self._open_picker(effect.announce, effect.prompt_if_blocked)
            elif isinstance(effect, SetPendingAction):
                self._set_pending_action(effect.action)
            elif isinstance(effect, ClearPendingAction):
                self._set_pending_action(None)
            elif isinstance(effect, ClearTranscript):
                self._clear_transcript()
            elif isinstance(effect, StopSession):
                self.stop()
            else:
                voice_log("SESSION", f"Unknown effect {effect!r}", level="WARNING")

    def _dispatch(self, command: Command):
        host = self.host
        kind = command.kind
        if kind is CommandKind.NAVIGATE:
            safe_call("CMD", host.navigate, command.get("path"))
        elif kind is CommandKind.PLAY_ALL_TRACKS:
            safe_call("CMD", host.play_all, command.get("song"))
        elif kind is CommandKind.STOP_ALL_PLAYBACK:
            safe_call("CMD", host.stop_all_playback)
        elif kind is CommandKind.CLEAR_LIBRARY:
            safe_call("CMD", host.clear_library)
        elif kind is CommandKind.RELOAD:
            safe_call("CMD", host.reload)
        elif kind is CommandKind.LOGOUT:
            safe_call("CMD", host.logout)
        elif kind is CommandKind.CLEAR_FILE_SELECTION:
            safe_call("CMD", host.clear_file_selection)
        elif kind is CommandKind.PLAY_STEM_FOR_SONG:
            song, delivered = command.get("song"), command.get("file")
            safe_call("CMD", host.play_toggle, song.track_key(delivered), delivered, song)
        else:
            voice_log("CMD", f"Nothing to dispatch for {kind.value}", level="WARNING")

    def _open_picker(self, announce: bool, prompt_if_blocked: bool = True):
        try:
            self.host.open_file_picker()
        except PickerBlocked as e:
            voice_log("CMD", f"File picker blocked: {e}", level="WARNING")
            self._set_pending_action(PendingAction(PendingKind.UPLOAD, t("pending.open_picker")))
            if prompt_if_blocked:
                self.feedback.speak(t("speech.picker_tap_required"))
                safe_call("SESSION", self.host.set_status, t("status.tap_required"))
            return
        except Exception as e:
            voice_log("CMD", f"File picker failed: {e}", level="ERROR")
            return
        if announce:
            self.feedback.speak(t("speech.picker_attempt"))
            safe_call("SESSION", self.host.set_status, t("status.opening_picker"))

    def _set_pending_action(self, action: Optional[PendingAction]):
        with self._lock:
            if self._pending_action == action:
                return
            self._pending_action = action
        safe_call("SESSION", self.host.set_pending_action, action)

    def perform_pending_action(self) -> bool:
        """Execute the rendered affordance (the user's manual tap).

        Returns:
            True if there was a pending action and it ran
        """
        with self._lock:
            action = self._pending_action
        if action is None:
            return False

        if action.kind == PendingKind.UPLOAD:
            try:
                self.host.open_file_picker()
            except PickerBlocked as e:
                voice_log("CMD", f"File picker still blocked: {e}", level="WARNING")
                return False
            except Exception as e:
                voice_log("CMD", f"File picker failed: {e}", level="ERROR")
                return False
            safe_call("SESSION", self.host.set_status, t("status.opening_picker"))

        with self._lock:
            # Only the upload confirmation is answered by the tap
            ended_flow = self._flow_state.mode == FlowMode.UPLOAD_CONFIRMATION
            if ended_flow:
                self._flow_state = IDLE
        self._set_pending_action(None)
        if ended_flow:
            self._publish_flow(IDLE)
        return True

    # ── Bus signals ─────────────────────────────────────────────────

    def _on_file_selected(self, event: Event):
        if self.config.touch_device and self.is_active:
            voice_log("SESSION", "File selected on a touch device, stopping")
            self.stop()

    def _on_tos_agreed(self, event: Event):
        if self.is_active:
            voice_log("SESSION", "Terms agreed in the UI, stopping")
            self.stop()

    def _on_split_success(self, event: Event):
        self.feedback.speak(t("speech.split_done"))
        self.bus.publish(EventType.OPEN_SIDEBAR, source="voice")

        songs = self._songs()
        with self._lock:
            if self.session.connection_state == ConnectionState.OFFLINE or not songs:
                return
            prompt = StemSelectionPrompt(song_ref=songs[0].id)
            self._flow_state = prompt
        self._publish_flow(prompt)
