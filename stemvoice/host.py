#!/usr/bin/env python3
"""
Host capability surface.

The session controller never touches navigation, playback or the library
directly; it calls these methods. An application embeds Stem Voice by
subclassing VoiceHost. ConsoleHost is the terminal stand-in used by
`python -m stemvoice.service`.
"""

from typing import List, Optional, Union

from stemvoice.library import DeliveredFile, Song
from stemvoice.state_machine import PendingAction
from stemvoice.utils import voice_log


class PickerBlocked(Exception):
    """The platform refused to open the file picker without a direct user gesture."""


class VoiceHost:
    """Capabilities and read-only facts the controller consumes.

    Every method has a harmless default so a host only overrides what it
    supports.
    """

    # Read-only facts

    def songs(self) -> List[Song]:
        """Known songs, most recently added first."""
        return []

    def file_selected(self) -> bool:
        return False

    def picker_available(self) -> bool:
        return True

    # Commands

    def navigate(self, path: Union[str, int]):
        pass

    def logout(self):
        pass

    def play_all(self, song: Song):
        pass

    def stop_all_playback(self):
        pass

    def clear_library(self):
        pass

    def play_toggle(self, track_key: str, delivered: DeliveredFile, song: Song):
        pass

    def reload(self):
        pass

    def open_file_picker(self):
        """Open the file chooser.

        Raises:
            PickerBlocked: the platform requires a manual tap
        """
        pass

    def clear_file_selection(self):
        pass

    # Presentation

    def notify(self, title: str, message: str, error: bool = False):
        pass

    def set_status(self, text: str):
        pass

    def show_transcript(self, text: str, is_final: bool):
        pass

    def clear_transcript(self):
        pass

    def set_pending_action(self, action: Optional[PendingAction]):
        pass

    def connection_changed(self, state: str):
        pass


class ConsoleHost(VoiceHost):
    """Prints every capability call; keeps a tiny in-memory library state."""

    def __init__(self, songs: Optional[List[Song]] = None, touch_device: bool = False):
        self._songs = list(songs or [])
        self.touch_device = touch_device
        self.selected_file: Optional[str] = None
        self.playing: List[str] = []
        self.pending_action: Optional[PendingAction] = None
        self.status = ""

    def songs(self) -> List[Song]:
        return list(self._songs)

    def file_selected(self) -> bool:
        return self.selected_file is not None

    def select_file(self, name: str):
        self.selected_file = name
        voice_log("HOST", f"File selected: {name}")

    def add_song(self, song: Song):
        self._songs.insert(0, song)

    def navigate(self, path):
        voice_log("HOST", f"navigate({path!r})")

    def logout(self):
        voice_log("HOST", "logout()")

    def play_all(self, song):
        self.playing = [song.track_key(f) for f in song.files]
        voice_log("HOST", f"Playing all of {song.title!r} ({len(self.playing)} tracks)")

    def stop_all_playback(self):
        self.playing = []
        voice_log("HOST", "Playback stopped")

    def clear_library(self):
        self._songs = []
        self.playing = []
        voice_log("HOST", "Library cleared")

    def play_toggle(self, track_key, delivered, song):
        if track_key in self.playing:
            self.playing.remove(track_key)
            voice_log("HOST", f"Paused {delivered.filename} ({song.title})")
        else:
            self.playing.append(track_key)
            voice_log("HOST", f"Playing {delivered.filename} ({song.title})")

    def reload(self):
        voice_log("HOST", "reload()")

    def open_file_picker(self):
        if self.touch_device:
            raise PickerBlocked("Picker needs a tap on this device")
        voice_log("HOST", "File picker opened (type 'file <name>' to choose)")

    def clear_file_selection(self):
        voice_log("HOST", f"Cleared file selection ({self.selected_file})")
        self.selected_file = None

    def notify(self, title, message, error=False):
        level = "ERROR" if error else "INFO"
        voice_log("NOTICE", f"{title}: {message}", level=level)

    def set_status(self, text):
        self.status = text
        voice_log("STATUS", text)

    def show_transcript(self, text, is_final):
        if is_final:
            voice_log("HEARD", text)

    def set_pending_action(self, action):
        self.pending_action = action
        if action is not None:
            voice_log("HOST", f"[{action.label}] (type 'tap' to press)")

    def connection_changed(self, state):
        voice_log("HOST", f"Voice control {state}")
