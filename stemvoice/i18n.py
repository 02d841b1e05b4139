"""Spoken phrases, status lines and notices, looked up by dotted key.

Every user-facing string lives in stemvoice/locales/<lang>.yaml. English is
always loaded underneath the configured language, so a partial translation
still gets a phrase for every key:

    t("speech.split_done")
    t("status.playing_all", title="Imagine")
"""

import os
from typing import Any, List, Optional, Set

import yaml

from stemvoice.utils import voice_log

LOCALES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "locales")
BASE_LOCALE = "en"

# Configured locale first, then the base locale
_phrasebooks: List[dict] = []
_reported_missing: Set[str] = set()


def _load_phrasebook(lang: str) -> Optional[dict]:
    path = os.path.join(LOCALES_DIR, f"{lang}.yaml")
    if not os.path.exists(path):
        voice_log("I18N", f"No phrases for '{lang}', speaking {BASE_LOCALE}", level="WARNING")
        return None
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def setup(locale: str = BASE_LOCALE) -> None:
    """Load the phrase books for *locale*."""
    global _phrasebooks
    books = []
    for lang in dict.fromkeys((locale, BASE_LOCALE)):
        book = _load_phrasebook(lang)
        if book is not None:
            books.append(book)
    _phrasebooks = books
    _reported_missing.clear()


def _lookup(key: str, book: dict) -> Any:
    node = book
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def t(key: str, **fmt) -> Any:
    """Phrase for *key*, with {placeholders} filled from *fmt*.

    An unknown key is returned as-is and reported once.
    """
    if not _phrasebooks:
        setup()

    for book in _phrasebooks:
        phrase = _lookup(key, book)
        if phrase is not None:
            break
    else:
        if key not in _reported_missing:
            _reported_missing.add(key)
            voice_log("I18N", f"Missing phrase: {key}", level="WARNING")
        return key

    if fmt and isinstance(phrase, str):
        try:
            return phrase.format(**fmt)
        except (KeyError, IndexError) as e:
            voice_log("I18N", f"Bad placeholder in {key}: {e}", level="WARNING")
    return phrase
