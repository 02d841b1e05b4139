#!/usr/bin/env python3
"""Configuration loader for Stem Voice."""

import os
from typing import Optional, Any
from dataclasses import dataclass

from stemvoice.utils import voice_log


def load_config_yaml(config_path: str = "config.yaml") -> dict:
    """Load configuration from a YAML file."""
    import yaml
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            voice_log("CONFIG", f"Warning: Failed to load {config_path}: {e}", level="WARNING")
    return {}


def _parse_bool(raw: Any, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, str):
        return raw.strip().lower() in ("true", "1", "yes")
    return bool(raw)


def _parse_float(raw: Any, default: float, name: str) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        voice_log("CONFIG", f"Invalid {name}={raw!r}, using {default}", level="WARNING")
        return default
    if value <= 0:
        voice_log("CONFIG", f"Non-positive {name}={raw!r}, using {default}", level="WARNING")
        return default
    return value


def _parse_int(raw: Any, default: int, name: str) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        voice_log("CONFIG", f"Invalid {name}={raw!r}, using {default}", level="WARNING")
        return default
    if value <= 0:
        voice_log("CONFIG", f"Non-positive {name}={raw!r}, using {default}", level="WARNING")
        return default
    return value


@dataclass
class VoiceConfig:
    """Voice session configuration."""

    # Locale for spoken feedback and status strings
    language: str = "en"

    # Transcription transport
    api_base: str = "http://localhost:8000"
    transcribe_path: str = "/ws/transcribe"
    ws_ping_interval: float = 20.0
    ws_ping_timeout: float = 10.0

    # Session timing
    idle_timeout: float = 60.0
    tos_cooldown: float = 2.0
    transcript_display_window: float = 3.5
    touch_device: bool = False
    activation_sound: bool = True

    # Audio capture / playback
    sample_rate: int = 16000
    channels: int = 1
    chunk_interval: float = 0.25
    input_device: Optional[str] = None
    output_device: Optional[str] = None

    # Speech synthesis (Piper)
    tts_enabled: bool = True
    tts_piper_model_path: Optional[str] = None
    tts_cache_dir: Optional[str] = None

    # Known songs for the console host
    library_path: str = "library.yaml"

    @classmethod
    def from_yaml(cls, yaml_config: dict) -> "VoiceConfig":
        """Create config from YAML + env vars."""
        config = cls()
        yaml_config = yaml_config or {}

        config.language = str(yaml_config.get("language", config.language)).strip() or "en"

        transport_cfg = yaml_config.get("transport", {}) or {}
        session_cfg = yaml_config.get("session", {}) or {}
        audio_cfg = yaml_config.get("audio", {}) or {}
        tts_cfg = yaml_config.get("tts", {}) or {}
        library_cfg = yaml_config.get("library", {}) or {}

        config.api_base = str(transport_cfg.get("api_base", config.api_base)).strip()
        config.transcribe_path = str(transport_cfg.get("path", config.transcribe_path)).strip()
        config.ws_ping_interval = _parse_float(
            transport_cfg.get("ping_interval"), config.ws_ping_interval, "transport.ping_interval"
        )
        config.ws_ping_timeout = _parse_float(
            transport_cfg.get("ping_timeout"), config.ws_ping_timeout, "transport.ping_timeout"
        )

        config.idle_timeout = _parse_float(
            session_cfg.get("idle_timeout"), config.idle_timeout, "session.idle_timeout"
        )
        config.tos_cooldown = _parse_float(
            session_cfg.get("tos_cooldown"), config.tos_cooldown, "session.tos_cooldown"
        )
        config.transcript_display_window = _parse_float(
            session_cfg.get("transcript_display_window"),
            config.transcript_display_window,
            "session.transcript_display_window",
        )
        config.touch_device = _parse_bool(session_cfg.get("touch_device"), config.touch_device)
        config.activation_sound = _parse_bool(session_cfg.get("activation_sound"), config.activation_sound)

        config.sample_rate = _parse_int(audio_cfg.get("sample_rate"), config.sample_rate, "audio.sample_rate")
        config.channels = _parse_int(audio_cfg.get("channels"), config.channels, "audio.channels")
        config.chunk_interval = _parse_float(
            audio_cfg.get("chunk_interval"), config.chunk_interval, "audio.chunk_interval"
        )
        config.input_device = audio_cfg.get("input_device", config.input_device)
        config.output_device = audio_cfg.get("output_device", config.output_device)

        config.tts_enabled = _parse_bool(tts_cfg.get("enabled"), config.tts_enabled)
        config.tts_piper_model_path = tts_cfg.get("piper_model_path", config.tts_piper_model_path)
        config.tts_cache_dir = tts_cfg.get("cache_dir", config.tts_cache_dir)

        config.library_path = str(library_cfg.get("path", config.library_path)).strip()

        # Env var overrides
        if os.getenv("STEMVOICE_LANGUAGE"):
            config.language = os.getenv("STEMVOICE_LANGUAGE").strip() or "en"
        if os.getenv("STEMVOICE_API_BASE_URL"):
            config.api_base = os.getenv("STEMVOICE_API_BASE_URL").strip()
        if os.getenv("STEMVOICE_TRANSCRIBE_PATH"):
            config.transcribe_path = os.getenv("STEMVOICE_TRANSCRIBE_PATH").strip()
        if os.getenv("STEMVOICE_IDLE_TIMEOUT"):
            config.idle_timeout = _parse_float(
                os.getenv("STEMVOICE_IDLE_TIMEOUT"), config.idle_timeout, "STEMVOICE_IDLE_TIMEOUT"
            )
        if os.getenv("STEMVOICE_TOS_COOLDOWN"):
            config.tos_cooldown = _parse_float(
                os.getenv("STEMVOICE_TOS_COOLDOWN"), config.tos_cooldown, "STEMVOICE_TOS_COOLDOWN"
            )
        if os.getenv("STEMVOICE_TOUCH_DEVICE"):
            config.touch_device = _parse_bool(os.getenv("STEMVOICE_TOUCH_DEVICE"), config.touch_device)
        if os.getenv("STEMVOICE_ACTIVATION_SOUND"):
            config.activation_sound = _parse_bool(
                os.getenv("STEMVOICE_ACTIVATION_SOUND"), config.activation_sound
            )
        if os.getenv("STEMVOICE_INPUT_DEVICE"):
            config.input_device = os.getenv("STEMVOICE_INPUT_DEVICE").strip()
        if os.getenv("STEMVOICE_OUTPUT_DEVICE"):
            config.output_device = os.getenv("STEMVOICE_OUTPUT_DEVICE").strip()
        if os.getenv("STEMVOICE_TTS_ENABLED"):
            config.tts_enabled = _parse_bool(os.getenv("STEMVOICE_TTS_ENABLED"), config.tts_enabled)
        if os.getenv("STEMVOICE_PIPER_MODEL_PATH"):
            config.tts_piper_model_path = os.getenv("STEMVOICE_PIPER_MODEL_PATH").strip()
        if os.getenv("STEMVOICE_LIBRARY_PATH"):
            config.library_path = os.getenv("STEMVOICE_LIBRARY_PATH").strip()

        if not config.transcribe_path.startswith("/"):
            config.transcribe_path = "/" + config.transcribe_path

        return config

    def print_config_banner(self):
        """Print a startup summary with ASCII-safe formatting."""
        line = "=" * 58
        print("\n" + line)
        print("STEM VOICE CONTROL")
        print(line)
        print(f"Server: {self.api_base}{self.transcribe_path}")
        print(f"Audio : {self.sample_rate} Hz, {self.channels} ch, {int(self.chunk_interval * 1000)} ms chunks")
        if self.tts_enabled:
            print(f"TTS   : Piper ({self.tts_piper_model_path or 'default model'})")
        else:
            print("TTS   : disabled")
        print(f"Idle  : {self.idle_timeout:.0f}s timeout")
        print(f"Device: {'touch' if self.touch_device else 'desktop'}")
        print(f"Lang  : {self.language.upper()}")
        print(line + "\n")
