#!/usr/bin/env python3
"""
Console runner for Stem Voice.

    python -m stemvoice.service [--config config.yaml]

Enter toggles listening, q quits. A few console commands stand in for the
host application's UI:

    file <name>    choose a file (raises file-selected)
    agree          tick the terms checkbox (raises tos-agreed)
    split          finish a split (raises voice-split-success)
    tap            press the pending on-screen button
    say <text>     feed a final transcript while listening
    stats          event bus counters and recent signals
"""

import argparse
import os
import sys
import traceback

from dotenv import load_dotenv

from stemvoice import PROJECT_ROOT, i18n
from stemvoice.config_loader import VoiceConfig, load_config_yaml
from stemvoice.event_bus import EventType, get_event_bus
from stemvoice.host import ConsoleHost
from stemvoice.library import load_library
from stemvoice.session import SessionController
from stemvoice.utils import setup_crash_protection, voice_log

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))


def build_synthesizer(config: VoiceConfig):
    """Piper + sounddevice, or None (muted) if TTS is off or the model won't load."""
    if not config.tts_enabled:
        return None
    from stemvoice.tts.piper import PiperTTS
    from stemvoice.tts.playback import SoundDeviceSynthesizer
    try:
        provider = PiperTTS(model_path=config.tts_piper_model_path, cache_dir=config.tts_cache_dir)
    except Exception as e:
        voice_log("TTS", f"Piper unavailable, feedback will be muted: {e}", level="WARNING")
        return None
    return SoundDeviceSynthesizer(provider, output_device=config.output_device)


def build_controller(config: VoiceConfig, host: ConsoleHost) -> SessionController:
    from stemvoice.tts.playback import play_activation_chime
    return SessionController(
        config,
        host,
        synthesizer=build_synthesizer(config),
        chime=lambda: play_activation_chime(config.output_device),
    )


def handle_console_line(line: str, controller: SessionController, host: ConsoleHost) -> bool:
    """Run one console command. Returns False when the user asked to quit."""
    line = line.strip()
    bus = controller.bus
    command, _, arg = line.partition(" ")
    command = command.lower()

    if command in ("q", "quit", "exit"):
        return False
    if not command:
        controller.toggle()
    elif command == "file" and arg:
        host.select_file(arg)
        bus.publish(EventType.FILE_SELECTED, source="console")
    elif command == "agree":
        bus.publish(EventType.TOS_AGREED, source="console")
    elif command == "split":
        bus.publish(EventType.VOICE_SPLIT_SUCCESS, source="console")
    elif command == "tap":
        if not controller.perform_pending_action():
            voice_log("CONSOLE", "Nothing to tap")
    elif command == "say" and arg:
        if not controller.is_active:
            voice_log("CONSOLE", "Not listening, press Enter first")
        else:
            controller.handle_final_transcript(arg)
    elif command == "stats":
        for key, value in bus.get_stats().items():
            voice_log("CONSOLE", f"{key}: {value}")
        for event in bus.recent(5):
            voice_log("CONSOLE", f"{event!r} [{event.origin}] {event.payload}")
    else:
        voice_log("CONSOLE", f"Unknown command: {line}", level="WARNING")
    return True


def main(argv=None):
    """Run the console voice controller."""
    parser = argparse.ArgumentParser(description="Stem Voice console controller")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    args = parser.parse_args(argv)

    setup_crash_protection()

    config = VoiceConfig.from_yaml(load_config_yaml(args.config))
    i18n.setup(config.language)
    config.print_config_banner()

    host = ConsoleHost(load_library(config.library_path), touch_device=config.touch_device)
    bus = get_event_bus()
    bus.start()
    controller = build_controller(config, host)

    voice_log("STEMVOICE", "Enter = start/stop listening, q = quit")
    try:
        for line in sys.stdin:
            if not handle_console_line(line, controller, host):
                break
    except KeyboardInterrupt:
        voice_log("STEMVOICE", "Interrupted")
    except Exception as e:
        voice_log("CRITICAL", f"Unhandled exception in main: {e}", level="ERROR")
        voice_log("CRITICAL", traceback.format_exc(), level="ERROR")
        raise
    finally:
        controller.close()
        bus.stop()
        voice_log("STEMVOICE", "Bye")


if __name__ == "__main__":
    main()
