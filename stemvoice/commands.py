#!/usr/bin/env python3
"""
Voice command grammar.

Maps a transcript to a single Command. Rules are tried top to bottom and
the first match wins, so the order of COMMAND_RULES is the disambiguation
policy:

  1. session termination (exact phrases)
  2. navigation
  3. playback / library
  4. system (reload, logout)
  5. file selection
  6. terms-of-service trigger
  7. stem selection ("select all", "deselect all", "[de|un]select <stem>" toggles)
  8. targeted playback ("play <stem> for|from <song>")

Conversational flows get first look at a transcript before this grammar
(see stemvoice.flow).
"""

import re
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from stemvoice.library import Layer, Song


class CommandKind(Enum):
    NAVIGATE = "navigate"
    PLAY_ALL_TRACKS = "play-all-tracks"
    STOP_ALL_PLAYBACK = "stop-all-playback"
    CLEAR_LIBRARY = "clear-library"
    RELOAD = "reload"
    LOGOUT = "logout"
    STOP_SESSION = "stop-session"
    CLEAR_FILE_SELECTION = "clear-file-selection"
    OPEN_FILE_PICKER = "open-file-picker"
    START_TOS_FLOW = "start-tos-flow"
    SELECT_STEMS = "select-stems"
    PLAY_STEM_FOR_SONG = "play-stem-for-song"
    NO_MATCH = "no-match"


@dataclass
class Command:
    """Interpreted command with its kind-specific payload."""
    kind: CommandKind
    payload: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default=None):
        return self.payload.get(key, default)

    @property
    def matched(self) -> bool:
        return self.kind is not CommandKind.NO_MATCH

    def __repr__(self):
        shown = {k: v for k, v in self.payload.items() if not isinstance(v, (Song, Layer))}
        return f"Command({self.kind.value}, {shown})"


NO_MATCH = Command(CommandKind.NO_MATCH)

TERMINATION_PHRASES = ("stop listening", "turn off", "stop voice")

# Stem names the host's selection UI understands
VALID_STEM_SELECTORS = ("vocals", "percussion", "bass", "other", "instrumental", "original audio")

# "select <x>" aliases, first match wins
STEM_SELECTOR_ALIASES: List[Tuple[Tuple[str, ...], str]] = [
    (("drum", "percussion"), "percussion"),
    (("vocal",), "vocals"),
    (("instrumental", "instrument"), "instrumental"),
    (("original", "source"), "original audio"),
    (("bas",), "bass"),
]

# Spoken stem names that map onto a different layer id
LAYER_ID_ALIASES = {
    "original audio": "original",
    "percussion": "drums",
}

# Stem-selection prompt keywords -> candidate layer ids
PROMPT_STEM_KEYWORDS: List[Tuple[Tuple[str, ...], Tuple[str, ...]]] = [
    (("vocal",), ("vocals", "vocal")),
    (("drum", "percussion"), ("drums", "drum")),
    (("bass",), ("bass",)),
    (("instrumental", "other"), ("other", "instrumental")),
    (("original",), ("original",)),
]

SELECT_PATTERN = re.compile(r"\b(?:de|un)?select (.+)")
PLAY_FOR_PATTERN = re.compile(r"\bplay (.+?) (?:for|from) (.+)")


def normalize(text: str) -> str:
    """Lower-case, trim and collapse whitespace."""
    return re.sub(r"\s+", " ", (text or "").lower()).strip()


def contains_any(text: str, phrases: Sequence[str]) -> bool:
    return any(phrase in text for phrase in phrases)


def is_termination(text: str) -> bool:
    """Exact session-ending phrases, or an utterance ending in 'done'."""
    return text in TERMINATION_PHRASES or text == "done" or text.endswith(" done")


def normalize_stem_selector(raw: str) -> str:
    """Map a spoken stem name onto the selection UI's vocabulary.

    'drums' -> 'percussion', 'vocal' -> 'vocals', 'source' -> 'original audio'
    """
    raw = raw.strip()
    for keywords, selector in STEM_SELECTOR_ALIASES:
        if contains_any(raw, keywords):
            return selector
    return raw


def find_song(songs: Sequence[Song], query: str) -> Optional[Song]:
    """First song whose title contains *query*."""
    for song in songs:
        if query in song.title.lower():
            return song
    return None


def find_layer(song: Song, stem: str) -> Optional[Layer]:
    """Layer of *song* matching a spoken stem name by substring or alias."""
    alias_id = LAYER_ID_ALIASES.get(stem)
    for layer in song.layers:
        if stem in layer.name.lower() or stem in layer.id.lower():
            return layer
        if alias_id and layer.id.lower() == alias_id:
            return layer
    return None


def match_prompt_layer(text: str, song: Song) -> Optional[Layer]:
    """Layer named by a free-form reply to the stem-selection prompt."""
    for keywords, layer_ids in PROMPT_STEM_KEYWORDS:
        if not contains_any(text, keywords):
            continue
        for layer in song.layers:
            if layer.id.lower() in layer_ids:
                return layer
        return None
    return None


# ── Rules ────────────────────────────────────────────────────────────

Rule = Callable[[str, Sequence[Song]], Optional[Command]]


def _phrases(kind: CommandKind, phrases: Sequence[str], **payload) -> Rule:
    def rule(text: str, songs: Sequence[Song]) -> Optional[Command]:
        if contains_any(text, phrases):
            return Command(kind, dict(payload))
        return None
    rule.__name__ = f"rule_{kind.value}"
    return rule


def _termination_rule(text: str, songs: Sequence[Song]) -> Optional[Command]:
    if is_termination(text):
        return Command(CommandKind.STOP_SESSION)
    return None


def _play_all_rule(text: str, songs: Sequence[Song]) -> Optional[Command]:
    if contains_any(text, ("play all", "play music")):
        return Command(CommandKind.PLAY_ALL_TRACKS, {"song": songs[0] if songs else None})
    return None


def _stem_selection_rule(text: str, songs: Sequence[Song]) -> Optional[Command]:
    # "deselect all" and "unselect all" contain "select all", so they go first
    if contains_any(text, ("deselect all", "unselect all", "clear stems")):
        return Command(CommandKind.SELECT_STEMS, {"selector": "none"})
    if "select all" in text:
        return Command(CommandKind.SELECT_STEMS, {"selector": "all"})

    match = SELECT_PATTERN.search(text)
    if not match:
        return None
    requested = match.group(1).strip()
    selector = normalize_stem_selector(requested)
    if selector not in VALID_STEM_SELECTORS:
        return Command(CommandKind.SELECT_STEMS, {"selector": None, "requested": requested})
    return Command(CommandKind.SELECT_STEMS, {"selector": selector, "requested": requested})


def _play_stem_for_song_rule(text: str, songs: Sequence[Song]) -> Optional[Command]:
    match = PLAY_FOR_PATTERN.search(text)
    if not match:
        return None
    stem = match.group(1).strip()
    song_query = match.group(2).strip()

    song = find_song(songs, song_query)
    layer = find_layer(song, stem) if song else None
    delivered = song.find_file_for_layer(layer.id) if layer else None
    # Consumed even when unresolved; the payload says what was missing
    return Command(CommandKind.PLAY_STEM_FOR_SONG, {
        "stem": stem,
        "song_query": song_query,
        "song": song,
        "layer": layer,
        "file": delivered,
    })


COMMAND_RULES: List[Rule] = [
    _termination_rule,
    # Navigation
    _phrases(CommandKind.NAVIGATE, ("go to profile", "view profile", "show profile"), path="/profile"),
    _phrases(CommandKind.NAVIGATE, ("go home", "go to home"), path="/"),
    _phrases(CommandKind.NAVIGATE, ("go back", "back to app"), path=-1),
    _phrases(CommandKind.NAVIGATE, ("go to pricing", "view pricing", "show pricing"), path="/pricing"),
    # Playback / library
    _play_all_rule,
    _phrases(CommandKind.STOP_ALL_PLAYBACK, ("stop music", "stop all", "stop playing", "pause music")),
    _phrases(CommandKind.CLEAR_LIBRARY, ("clear library",)),
    # System
    _phrases(CommandKind.RELOAD, ("refresh page", "refresh", "reload")),
    _phrases(CommandKind.LOGOUT, ("logout", "log out", "sign out")),
    # File selection
    _phrases(CommandKind.CLEAR_FILE_SELECTION,
             ("clear file", "remove file", "clear selection", "cancel upload")),
    _phrases(CommandKind.OPEN_FILE_PICKER,
             ("open files", "upload file", "upload music", "select file",
              "pick file", "choose file", "select song")),
    # Terms of service
    _phrases(CommandKind.START_TOS_FLOW,
             ("split song", "split music", "split", "view tos", "view terms",
              "show terms", "terms of service")),
    # Stems
    _stem_selection_rule,
    _play_stem_for_song_rule,
]


def interpret(text: str, songs: Sequence[Song] = ()) -> Command:
    """Interpret a transcript against the command grammar.

    Args:
        text: Raw or normalized transcript
        songs: Known songs, newest first

    Returns:
        The first matching Command, or NO_MATCH
    """
    text = normalize(text)
    if not text:
        return NO_MATCH
    for rule in COMMAND_RULES:
        command = rule(text, songs)
        if command is not None:
            return command
    return NO_MATCH
