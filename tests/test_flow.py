"""Tests for the conversational flow transition function."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from stemvoice.commands import CommandKind
from stemvoice.event_bus import EventType
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
    is_tos_agreement,
    is_tos_refusal,
    transition,
)
from stemvoice.i18n import t
from stemvoice.state_machine import (
    IDLE,
    FlowMode,
    Idle,
    PendingAction,
    PendingKind,
    StemSelectionPrompt,
    TosVerification,
    UploadConfirmation,
)


def of_type(effects, cls):
    return [e for e in effects if isinstance(e, cls)]


@pytest.fixture
def ctx(songs):
    return FlowContext(now=100.0, songs=songs)


UPLOAD = UploadConfirmation(PendingAction(PendingKind.UPLOAD, "Open File Explorer"))


class TestIdle:
    def test_terms_of_service_enters_verification(self, ctx):
        result = transition(IDLE, "terms of service", ctx)
        assert isinstance(result.state, TosVerification)
        assert result.state.announced_at == 100.0
        assert Speak(t("speech.tos_summary")) in result.effects
        assert RaiseSignal(EventType.VOICE_VIEW_TOS) in result.effects
        assert result.matched

    def test_unmatched_is_silent(self, ctx):
        result = transition(IDLE, "lovely weather", ctx)
        assert result.state is IDLE
        assert result.effects == []
        assert not result.matched

    def test_navigation_dispatches(self, ctx):
        result = transition(IDLE, "go to pricing", ctx)
        dispatched = of_type(result.effects, Dispatch)
        assert dispatched[0].command.get("path") == "/pricing"
        assert SetStatus(t("status.navigating_pricing")) in result.effects

    def test_stop_listening(self, ctx):
        result = transition(IDLE, "stop listening", ctx)
        assert StopSession() in result.effects
        assert result.state is IDLE

    def test_select_stem_raises_signal(self, ctx):
        result = transition(IDLE, "select drums", ctx)
        assert RaiseSignal(EventType.VOICE_SELECT_STEM, {"stemId": "percussion"}) in result.effects

    def test_unknown_stem_sets_status_only(self, ctx):
        result = transition(IDLE, "select kazoo", ctx)
        assert result.matched
        assert of_type(result.effects, RaiseSignal) == []
        assert SetStatus(t("status.unknown_stem", stem="kazoo")) in result.effects

    def test_song_not_found_status(self, ctx):
        result = transition(IDLE, "play vocals from nowhere", ctx)
        assert result.matched
        assert of_type(result.effects, Dispatch) == []
        assert SetStatus(t("status.song_not_found", query="nowhere")) in result.effects

    def test_play_stem_dispatches(self, ctx, imagine):
        result = transition(IDLE, "play vocals from imagine", ctx)
        command = of_type(result.effects, Dispatch)[0].command
        assert command.kind is CommandKind.PLAY_STEM_FOR_SONG
        assert command.get("song") is imagine

    def test_play_all_with_empty_library(self):
        result = transition(IDLE, "play all", FlowContext(now=0.0, songs=[]))
        assert result.effects == [SetStatus(t("status.no_tracks"))]

    def test_clear_file_without_selection(self, ctx):
        result = transition(IDLE, "clear file", ctx)
        assert result.effects == [SetStatus(t("status.no_file_to_clear"))]

    def test_clear_file_with_selection(self, ctx):
        ctx.file_selected = True
        result = transition(IDLE, "clear file", ctx)
        assert of_type(result.effects, Dispatch)[0].command.kind is CommandKind.CLEAR_FILE_SELECTION


class TestFilePicker:
    def test_desktop_opens_directly(self, ctx):
        result = transition(IDLE, "open files", ctx)
        assert result.state is IDLE
        assert OpenPicker(announce=False) in result.effects

    def test_touch_device_asks_for_confirmation(self, ctx):
        ctx.touch_device = True
        result = transition(IDLE, "upload file", ctx)
        assert isinstance(result.state, UploadConfirmation)
        assert of_type(result.effects, OpenPicker) == [OpenPicker(announce=False, prompt_if_blocked=False)]
        assert Speak(t("speech.upload_prompt")) in result.effects
        assert of_type(result.effects, SetPendingAction)[0].action.kind == PendingKind.UPLOAD

    def test_touch_device_speaks_only_the_upload_prompt(self, ctx):
        ctx.touch_device = True
        result = transition(IDLE, "open files", ctx)
        assert of_type(result.effects, Speak) == [Speak(t("speech.upload_prompt"))]
        assert not of_type(result.effects, OpenPicker)[0].prompt_if_blocked

    def test_file_already_selected(self, ctx):
        ctx.file_selected = True
        result = transition(IDLE, "open files", ctx)
        assert Speak(t("speech.file_already_selected")) in result.effects
        assert of_type(result.effects, OpenPicker) == []

    def test_picker_unavailable(self, ctx):
        ctx.picker_available = False
        result = transition(IDLE, "open files", ctx)
        assert result.effects == [SetStatus(t("status.picker_unavailable"))]


class TestTosVerification:
    def test_end_to_end_agreement(self, ctx):
        announced = transition(IDLE, "terms of service", ctx).state
        ctx.now = 102.1
        result = transition(announced, "yes", ctx)
        assert result.state is IDLE
        assert Speak(t("speech.tos_proceeding")) in result.effects
        assert RaiseSignal(EventType.VOICE_TRIGGER_SPLIT) in result.effects
        assert ClearTranscript() in result.effects
        assert ClearPendingAction() in result.effects

    @pytest.mark.parametrize("reply", ["yes", "i agree", "agree", "confirm", "i do", "yes i agree", "oh yes please"])
    def test_agreement_phrases(self, ctx, reply):
        ctx.now = 110.0
        result = transition(TosVerification(announced_at=100.0), reply, ctx)
        assert RaiseSignal(EventType.VOICE_TRIGGER_SPLIT) in result.effects

    def test_long_sentence_with_yes_is_not_agreement(self, ctx):
        ctx.now = 110.0
        state = TosVerification(announced_at=100.0)
        result = transition(state, "yes but first tell me more", ctx)
        assert result.state == state
        assert result.effects == []

    @pytest.mark.parametrize("reply", [
        "no", "cancel", "disagree", "i don't agree", "i do not agree", "i disagree", "no i disagree",
    ])
    def test_refusal(self, ctx, reply):
        ctx.now = 110.0
        result = transition(TosVerification(announced_at=100.0), reply, ctx)
        assert result.state is IDLE
        assert Speak(t("speech.cancelled")) in result.effects
        assert of_type(result.effects, RaiseSignal) == []

    @pytest.mark.parametrize("reply", ["disagree", "i disagree", "no i disagree"])
    def test_disagree_is_never_agreement(self, reply):
        assert not is_tos_agreement(reply)
        assert is_tos_refusal(reply)

    @pytest.mark.parametrize("reply", ["yes", "no", "stop listening", "terms of service", "go home"])
    def test_ignored_while_speaking(self, ctx, reply):
        ctx.now = 500.0
        ctx.speaking = True
        state = TosVerification(announced_at=100.0)
        result = transition(state, reply, ctx)
        assert result.state == state
        assert result.effects == []
        assert not result.matched

    @pytest.mark.parametrize("elapsed", [0.0, 0.5, 1.999])
    def test_cooldown(self, ctx, elapsed):
        ctx.now = 100.0 + elapsed
        state = TosVerification(announced_at=100.0)
        for reply in ("yes", "i agree", "no", "cancel"):
            result = transition(state, reply, ctx)
            assert result.state == state
            assert result.effects == []

    def test_termination(self, ctx):
        ctx.now = 110.0
        result = transition(TosVerification(announced_at=100.0), "stop voice", ctx)
        assert result.state is IDLE
        assert Speak(t("speech.cancelling_voice")) in result.effects
        assert StopSession() in result.effects

    def test_standard_commands_are_ignored(self, ctx):
        ctx.now = 110.0
        state = TosVerification(announced_at=100.0)
        result = transition(state, "go to profile", ctx)
        assert result.state == state
        assert of_type(result.effects, Dispatch) == []


class TestUploadConfirmation:
    def test_confirm_reopens_picker_and_stays(self, ctx):
        result = transition(UPLOAD, "yes please", ctx)
        assert result.state == UPLOAD
        assert result.effects == [OpenPicker(announce=True)]

    def test_do_it(self, ctx):
        assert transition(UPLOAD, "do it", ctx).effects == [OpenPicker(announce=True)]

    def test_cancel_clears_pending(self, ctx):
        result = transition(UPLOAD, "no", ctx)
        assert isinstance(result.state, Idle)
        assert Speak(t("speech.cancelled")) in result.effects
        assert ClearPendingAction() in result.effects

    def test_word_matching_not_substring(self, ctx):
        # "know" contains "no" but is not a refusal
        result = transition(UPLOAD, "i know", ctx)
        assert result.state == UPLOAD
        assert not result.matched

    def test_falls_through_to_standard(self, ctx):
        result = transition(UPLOAD, "go home", ctx)
        assert result.state == UPLOAD
        assert of_type(result.effects, Dispatch)[0].command.get("path") == "/"

    def test_termination_first(self, ctx):
        result = transition(UPLOAD, "stop listening", ctx)
        assert StopSession() in result.effects
        assert ClearPendingAction() in result.effects

    def test_leaving_for_tos_drops_pending_action(self, ctx):
        result = transition(UPLOAD, "terms of service", ctx)
        assert isinstance(result.state, TosVerification)
        assert result.effects[0] == ClearPendingAction()


class TestStemSelectionPrompt:
    @pytest.fixture
    def prompt(self, imagine):
        return StemSelectionPrompt(song_ref=imagine.id)

    def test_play_everything(self, ctx, prompt, imagine):
        result = transition(prompt, "everything", ctx)
        assert result.state == prompt
        command = of_type(result.effects, Dispatch)[0].command
        assert command.kind is CommandKind.PLAY_ALL_TRACKS
        assert command.get("song") is imagine

    def test_play_one_stem_persists(self, ctx, prompt):
        result = transition(prompt, "the drums", ctx)
        assert result.state == prompt
        assert Speak(t("speech.playing_stem", name="Drums")) in result.effects
        command = of_type(result.effects, Dispatch)[0].command
        assert command.get("file").filename == "imagine/drums.wav"

    @pytest.mark.parametrize("reply", ["nothing", "no thanks", "that's it", "goodbye", "no", "done", "cancel"])
    def test_exit_phrases(self, ctx, prompt, reply):
        result = transition(prompt, reply, ctx)
        assert result.state is IDLE
        assert Speak(t("speech.stem_prompt_closing")) in result.effects
        assert of_type(result.effects, StopSession) == []

    def test_termination_phrase_stops_session(self, ctx, prompt):
        result = transition(prompt, "turn off", ctx)
        assert StopSession() in result.effects

    def test_ignored_while_speaking(self, ctx, prompt):
        ctx.speaking = True
        result = transition(prompt, "vocals", ctx)
        assert result.state == prompt
        assert result.effects == []

    def test_missing_song_returns_to_idle(self, ctx):
        result = transition(StemSelectionPrompt(song_ref="gone"), "vocals", ctx)
        assert result.state.mode == FlowMode.IDLE

    def test_falls_through_to_standard(self, ctx, prompt):
        result = transition(prompt, "go to profile", ctx)
        assert result.state == prompt
        assert of_type(result.effects, Dispatch)[0].command.get("path") == "/profile"

    def test_upload_from_prompt_keeps_new_pending_action(self, ctx, prompt):
        ctx.touch_device = True
        result = transition(prompt, "open files", ctx)
        assert isinstance(result.state, UploadConfirmation)
        clear = result.effects.index(ClearPendingAction())
        assert clear < result.effects.index(of_type(result.effects, SetPendingAction)[0])
