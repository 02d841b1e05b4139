"""Tests for the phrase lookup."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stemvoice.i18n import setup, t


def test_spoken_phrases_loaded():
    setup("en")
    assert t("speech.split_done") == "It's done, check music library."
    assert "I agree" in t("speech.tos_summary")


def test_missing_key_returns_key_and_is_reported_once(capsys):
    setup("en")
    assert t("nonexistent.key.path") == "nonexistent.key.path"
    assert t("nonexistent.key.path") == "nonexistent.key.path"
    assert capsys.readouterr().out.count("Missing phrase: nonexistent.key.path") == 1


def test_placeholder_formatting():
    setup("en")
    assert t("status.playing_all", title="Imagine") == "Playing all tracks for: Imagine"
    assert t("status.song_not_found", query="x") == 'Could not find song "x" in library'


def test_bad_placeholder_keeps_template():
    setup("en")
    assert t("status.playing_all", name="Imagine") == "Playing all tracks for: {title}"


def test_unknown_locale_speaks_english(capsys):
    setup("xx")
    try:
        assert t("status.online") == "Online"
        assert "No phrases for 'xx'" in capsys.readouterr().out
    finally:
        setup("en")
