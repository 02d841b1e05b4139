#!/usr/bin/env python3
"""Read-only view of the host's music library (songs, stem layers, delivered files)."""

import os
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from stemvoice.utils import voice_log


@dataclass
class Layer:
    """One stem layer of a song (vocals, drums, bass, ...)."""
    id: str
    name: str
    icon: str = ""
    volume: float = 1.0


@dataclass
class DeliveredFile:
    """A separated audio file delivered for a song."""
    filename: str
    url: str = ""

    @property
    def basename(self) -> str:
        """Lower-cased file name without directories or extensions.

        'out/Imagine/Vocals.wav' -> 'vocals'
        """
        name = self.filename.replace("\\", "/").split("/")[-1]
        return name.split(".")[0].lower()


@dataclass
class Song:
    """A library entry as the host exposes it."""
    id: str
    title: str
    layers: List[Layer] = field(default_factory=list)
    files: List[DeliveredFile] = field(default_factory=list)
    url: str = ""

    def find_file_for_layer(self, layer_id: str) -> Optional[DeliveredFile]:
        """Delivered file whose basename equals the layer id."""
        wanted = layer_id.lower()
        for delivered in self.files:
            if delivered.basename == wanted:
                return delivered
        return None

    def track_key(self, delivered: DeliveredFile) -> str:
        """Key the host's player uses for a single track."""
        return f"{self.id}__{delivered.filename}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Song":
        layers = [
            Layer(
                id=str(layer.get("id", "")),
                name=str(layer.get("name", layer.get("id", ""))),
                icon=str(layer.get("icon", "")),
                volume=float(layer.get("volume", 1.0)),
            )
            for layer in data.get("layers") or []
            if isinstance(layer, dict)
        ]
        files = []
        for entry in data.get("files") or []:
            if isinstance(entry, str):
                files.append(DeliveredFile(filename=entry))
            elif isinstance(entry, dict) and entry.get("filename"):
                files.append(DeliveredFile(
                    filename=str(entry["filename"]),
                    url=str(entry.get("blobUrl", entry.get("url", ""))),
                ))
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            layers=layers,
            files=files,
            url=str(data.get("url", "")),
        )


def load_library(path: str) -> List[Song]:
    """Load known songs from a YAML file (a list under 'songs', newest first)."""
    import yaml
    if not path or not os.path.exists(path):
        voice_log("LIBRARY", f"No library file at {path}, starting empty", level="WARNING")
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        voice_log("LIBRARY", f"Failed to load {path}: {e}", level="ERROR")
        return []

    entries = data.get("songs", []) if isinstance(data, dict) else data
    songs = [Song.from_dict(entry) for entry in entries or [] if isinstance(entry, dict)]
    voice_log("LIBRARY", f"Loaded {len(songs)} songs from {path}")
    return songs
