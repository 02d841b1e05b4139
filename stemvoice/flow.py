#!/usr/bin/env python3
"""
Conversational flow state machine.

transition() is pure: it takes the current FlowState, a final transcript and
a snapshot of the session's flags, and returns the next FlowState plus a list
of effects for the SessionController to execute. Nothing here touches audio,
sockets, timers or the host.

Per-mode handling:

    Idle                  standard command grammar only
    TosVerification       self-trigger gate, then agree / disagree / terminate;
                          everything else is ignored
    UploadConfirmation    terminate, then yes / no, then standard grammar
    StemSelectionPrompt   terminate, self-trigger gate, then all / <stem> /
                          exit phrase, then standard grammar
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from stemvoice.commands import (
    Command,
    CommandKind,
    TERMINATION_PHRASES,
    contains_any,
    interpret,
    is_termination,
    match_prompt_layer,
    normalize,
)
from stemvoice.event_bus import EventType, select_stem
from stemvoice.i18n import t
from stemvoice.library import Song
from stemvoice.state_machine import (
    IDLE,
    FlowState,
    Idle,
    PendingAction,
    PendingKind,
    StemSelectionPrompt,
    TosVerification,
    UploadConfirmation,
)


# ── Effects ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class SetStatus:
    text: str


@dataclass(frozen=True)
class RaiseSignal:
    event_type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Dispatch:
    """Run a host capability for a resolved command."""
    command: Command


@dataclass(frozen=True)
class OpenPicker:
    """Try to open the host's file picker.

    announce: speak the outcome. A blocked picker always becomes a pending
    action regardless; prompt_if_blocked=False leaves the spoken tap prompt
    to whatever effect follows.
    """
    announce: bool = False
    prompt_if_blocked: bool = True


@dataclass(frozen=True)
class SetPendingAction:
    action: PendingAction


@dataclass(frozen=True)
class ClearPendingAction:
    pass


@dataclass(frozen=True)
class StopSession:
    pass


@dataclass(frozen=True)
class ClearTranscript:
    pass


Effect = Any


@dataclass
class FlowContext:
    """Snapshot of everything transition() may read besides the transcript."""
    now: float
    speaking: bool = False
    touch_device: bool = False
    songs: Sequence[Song] = ()
    file_selected: bool = False
    picker_available: bool = True
    tos_cooldown: float = 2.0


@dataclass
class FlowResult:
    state: FlowState
    effects: List[Effect] = field(default_factory=list)
    matched: bool = False
    command: Optional[Command] = None


# ── Vocabulary ──────────────────────────────────────────────────────

TOS_AGREE_EXACT = ("yes", "i agree", "agree", "confirm", "i do")
TOS_AGREE_SHORT = ("yes", "agree")
TOS_DISAGREE_EXACT = ("no", "cancel")
TOS_DISAGREE_CONTAINS = ("disagree", "don't agree", "do not agree")

UPLOAD_CONFIRM_WORDS = ("yes", "sure", "ok", "okay", "confirm")
UPLOAD_CONFIRM_PHRASES = ("do it",)
UPLOAD_CANCEL_WORDS = ("no", "cancel", "stop")

PROMPT_ALL_PHRASES = ("all", "everything", "play all")
PROMPT_EXIT_CONTAINS = ("nothing", "no thanks", "stop", "that's it", "goodbye")
PROMPT_EXIT_EXACT = ("no", "done", "cancel")

NAVIGATION_STATUS = {
    "/profile": "status.navigating_profile",
    "/": "status.navigating_home",
    -1: "status.navigating_back",
    "/pricing": "status.navigating_pricing",
}


def _words(text: str) -> List[str]:
    return text.split()


def is_tos_agreement(text: str) -> bool:
    if text in TOS_AGREE_EXACT:
        return True
    # "agree" inside "disagree" never counts
    return len(_words(text)) <= 3 and contains_any(text.replace("disagree", ""), TOS_AGREE_SHORT)


def is_tos_refusal(text: str) -> bool:
    return text in TOS_DISAGREE_EXACT or contains_any(text, TOS_DISAGREE_CONTAINS)


def is_upload_confirmation(text: str) -> bool:
    words = _words(text)
    return any(w in words for w in UPLOAD_CONFIRM_WORDS) or contains_any(text, UPLOAD_CONFIRM_PHRASES)


def is_upload_cancellation(text: str) -> bool:
    words = _words(text)
    return any(w in words for w in UPLOAD_CANCEL_WORDS)


def is_prompt_exit(text: str) -> bool:
    return text in PROMPT_EXIT_EXACT or contains_any(text, PROMPT_EXIT_CONTAINS)


# ── Standard commands ───────────────────────────────────────────────

def apply_command(command: Command, state: FlowState, ctx: FlowContext) -> FlowResult:
    """Effects and next state for a command from the standard grammar."""
    kind = command.kind
    effects: List[Effect] = []
    next_state = state

    if kind is CommandKind.NO_MATCH:
        return FlowResult(state, [], matched=False, command=command)

    if kind is CommandKind.NAVIGATE:
        status_key = NAVIGATION_STATUS.get(command.get("path"), "status.navigating_home")
        effects += [SetStatus(t(status_key)), Dispatch(command)]

    elif kind is CommandKind.PLAY_ALL_TRACKS:
        song = command.get("song")
        if song is None:
            effects.append(SetStatus(t("status.no_tracks")))
        else:
            effects += [SetStatus(t("status.playing_all", title=song.title)), Dispatch(command)]

    elif kind is CommandKind.STOP_ALL_PLAYBACK:
        effects += [SetStatus(t("status.stopping_playback")), Dispatch(command)]

    elif kind is CommandKind.CLEAR_LIBRARY:
        effects += [SetStatus(t("status.clearing_library")), Dispatch(command)]

    elif kind is CommandKind.RELOAD:
        effects += [SetStatus(t("status.refreshing")), Dispatch(command)]

    elif kind is CommandKind.LOGOUT:
        effects += [SetStatus(t("status.logging_out")), Dispatch(command)]

    elif kind is CommandKind.STOP_SESSION:
        effects += [SetStatus(t("status.powering_off")), StopSession()]
        next_state = IDLE

    elif kind is CommandKind.CLEAR_FILE_SELECTION:
        if ctx.file_selected:
            effects += [SetStatus(t("status.clearing_selection")), Dispatch(command)]
        else:
            effects.append(SetStatus(t("status.no_file_to_clear")))

    elif kind is CommandKind.OPEN_FILE_PICKER:
        if ctx.file_selected:
            effects += [
                Speak(t("speech.file_already_selected")),
                SetStatus(t("status.file_already_selected")),
            ]
        elif not ctx.picker_available:
            effects.append(SetStatus(t("status.picker_unavailable")))
        elif not ctx.touch_device:
            effects += [SetStatus(t("status.opening_picker")), OpenPicker(announce=False)]
        else:
            # The upload prompt is the only thing spoken, blocked or not
            action = PendingAction(PendingKind.UPLOAD, t("pending.open_picker"))
            effects += [
                SetStatus(t("status.opening_picker")),
                OpenPicker(announce=False, prompt_if_blocked=False),
                Speak(t("speech.upload_prompt")),
                SetStatus(t("status.confirm_to_open")),
                SetPendingAction(action),
            ]
            next_state = UploadConfirmation(pending_action=action)

    elif kind is CommandKind.START_TOS_FLOW:
        effects += [
            SetStatus(t("status.tos_listen")),
            RaiseSignal(EventType.VOICE_VIEW_TOS),
            Speak(t("speech.tos_summary")),
        ]
        next_state = TosVerification(announced_at=ctx.now)

    elif kind is CommandKind.SELECT_STEMS:
        selector = command.get("selector")
        if selector is None:
            effects.append(SetStatus(t("status.unknown_stem", stem=command.get("requested", ""))))
        else:
            if selector == "all":
                status = t("status.selecting_all")
            elif selector == "none":
                status = t("status.deselecting_all")
            else:
                status = t("status.toggling_stem", stem=selector)
            effects += [
                SetStatus(status),
                RaiseSignal(EventType.VOICE_SELECT_STEM, select_stem(selector)),
            ]

    elif kind is CommandKind.PLAY_STEM_FOR_SONG:
        song, layer, delivered = command.get("song"), command.get("layer"), command.get("file")
        if song is None:
            effects.append(SetStatus(t("status.song_not_found", query=command.get("song_query"))))
        elif layer is None:
            effects.append(SetStatus(t("status.stem_not_found", stem=command.get("stem"), title=song.title)))
        elif delivered is None:
            effects.append(SetStatus(t("status.file_not_found", layer=layer.name, title=song.title)))
        else:
            effects += [
                SetStatus(t("status.playing_stem_for", layer=layer.name, title=song.title)),
                Dispatch(command),
            ]

    return FlowResult(next_state, effects, matched=True, command=command)


def _standard(text: str, state: FlowState, ctx: FlowContext) -> FlowResult:
    return apply_command(interpret(text, ctx.songs), state, ctx)


# ── Per-mode handlers ───────────────────────────────────────────────

def _tos_verification(text: str, state: TosVerification, ctx: FlowContext) -> FlowResult:
    # The announcement itself may be picked up by the microphone
    if ctx.speaking or ctx.now - state.announced_at < ctx.tos_cooldown:
        return FlowResult(state)

    # Refusal first: "don't agree" is short and contains "agree"
    if is_tos_refusal(text):
        return FlowResult(IDLE, [
            Speak(t("speech.cancelled")),
            SetStatus(t("status.cancelled")),
            ClearTranscript(),
        ], matched=True)

    if is_tos_agreement(text):
        return FlowResult(IDLE, [
            Speak(t("speech.tos_proceeding")),
            SetStatus(t("status.tos_agreed")),
            ClearTranscript(),
            RaiseSignal(EventType.VOICE_TRIGGER_SPLIT),
        ], matched=True)

    if is_termination(text):
        return FlowResult(IDLE, [Speak(t("speech.cancelling_voice")), StopSession()], matched=True)

    return FlowResult(state)


def _upload_confirmation(text: str, state: UploadConfirmation, ctx: FlowContext) -> FlowResult:
    if is_upload_confirmation(text):
        # Stays in the flow until a file arrives or the user cancels
        return FlowResult(state, [OpenPicker(announce=True)], matched=True)

    if is_upload_cancellation(text):
        return FlowResult(IDLE, [Speak(t("speech.cancelled")), SetStatus(t("status.cancelled"))], matched=True)

    return _standard(text, state, ctx)


def _find_prompt_song(state: StemSelectionPrompt, songs: Sequence[Song]) -> Optional[Song]:
    for song in songs:
        if song.id == state.song_ref:
            return song
    return None


def _stem_selection_prompt(text: str, state: StemSelectionPrompt, ctx: FlowContext) -> FlowResult:
    if ctx.speaking:
        return FlowResult(state)

    song = _find_prompt_song(state, ctx.songs)
    if song is None:
        return _standard(text, IDLE, ctx)

    if contains_any(text, PROMPT_ALL_PHRASES):
        return FlowResult(state, [
            Speak(t("speech.playing_all_stems")),
            Dispatch(Command(CommandKind.PLAY_ALL_TRACKS, {"song": song})),
        ], matched=True)

    layer = match_prompt_layer(text, song)
    delivered = song.find_file_for_layer(layer.id) if layer else None
    if delivered is not None:
        command = Command(CommandKind.PLAY_STEM_FOR_SONG, {
            "stem": layer.id,
            "song_query": song.title.lower(),
            "song": song,
            "layer": layer,
            "file": delivered,
        })
        return FlowResult(state, [Speak(t("speech.playing_stem", name=layer.name)), Dispatch(command)], matched=True)

    if is_prompt_exit(text):
        return FlowResult(IDLE, [Speak(t("speech.stem_prompt_closing"))], matched=True)

    return _standard(text, state, ctx)


def transition(state: FlowState, text: str, ctx: FlowContext) -> FlowResult:
    """Consume one final transcript.

    Args:
        state: Current flow state
        text: Final transcript, raw or normalized
        ctx: Session flags and host facts at the time of the transcript

    Returns:
        FlowResult with the next state and the effects to run, in order
    """
    text = normalize(text)
    if not text:
        return FlowResult(state)

    if isinstance(state, TosVerification):
        result = _tos_verification(text, state, ctx)
    elif text in TERMINATION_PHRASES:
        result = FlowResult(IDLE, [SetStatus(t("status.powering_off")), StopSession()], matched=True)
    elif isinstance(state, UploadConfirmation):
        result = _upload_confirmation(text, state, ctx)
    elif isinstance(state, StemSelectionPrompt):
        result = _stem_selection_prompt(text, state, ctx)
    else:
        result = _standard(text, state, ctx)

    # Leaving a flow always drops its affordance, before the next flow sets its own
    if not isinstance(state, Idle) and type(result.state) is not type(state):
        result.effects.insert(0, ClearPendingAction())
    return result
