"""Minimal smoke tests for Stem Voice modules."""

import sys
import os

# Ensure project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def test_import_utils():
    from stemvoice.utils import voice_log, setup_crash_protection, safe_call
    assert callable(voice_log)
    assert callable(setup_crash_protection)
    assert callable(safe_call)


def test_voice_log_format(capsys):
    from stemvoice.utils import voice_log
    voice_log("SESSION", "Online")
    out = capsys.readouterr().out
    assert "[INFO] [SESSION] Online" in out


def test_safe_call_swallows_and_logs(capsys):
    from stemvoice.utils import safe_call

    def explode():
        raise RuntimeError("host down")

    assert safe_call("CMD", explode) is None
    assert "host down" in capsys.readouterr().out
    assert safe_call("CMD", lambda x: x * 2, 21) == 42


def test_import_session_without_audio_stack():
    from stemvoice.session import SessionController
    from stemvoice.service import handle_console_line
    assert SessionController is not None
    assert callable(handle_console_line)


def test_library_loading(tmp_path):
    from stemvoice.library import load_library
    path = tmp_path / "library.yaml"
    path.write_text(
        "songs:\n"
        "  - id: s1\n"
        "    title: Imagine\n"
        "    layers:\n"
        "      - {id: vocals, name: Vocals}\n"
        "    files:\n"
        "      - {filename: 'out\\Imagine\\Vocals.wav', blobUrl: 'https://cdn/x.wav'}\n",
        encoding="utf-8",
    )
    songs = load_library(str(path))
    assert songs[0].title == "Imagine"
    delivered = songs[0].find_file_for_layer("vocals")
    assert delivered.url == "https://cdn/x.wav"
    assert songs[0].track_key(delivered) == "s1__out\\Imagine\\Vocals.wav"


def test_missing_library(tmp_path):
    from stemvoice.library import load_library
    assert load_library(str(tmp_path / "nope.yaml")) == []
