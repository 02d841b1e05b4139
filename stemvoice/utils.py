#!/usr/bin/env python3
"""
Stem Voice Utilities

Logging and crash protection for the voice session controller.
"""

import os
import sys
import traceback
import threading
from datetime import datetime

# Capture callbacks, socket callbacks and timers all log concurrently
_stdout_lock = threading.Lock()


def voice_log(tag: str, message: str, level: str = "INFO"):
    """
    Log a message with timestamp and tag.

    Format: [HH:MM:SS.mmm] [LEVEL] [TAG] message

    Args:
        tag: Component tag (e.g., "SESSION", "TRANSPORT", "TTS")
        message: Log message
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]

    # Format: [14:08:25.342] [INFO] [SESSION] Online
    log_line = f"[{timestamp}] [{level}] [{tag}] {message}"

    with _stdout_lock:
        print(log_line, flush=True)


def log_crash(exc_type, exc_value, exc_traceback):
    """
    Log crash information to file for debugging.

    Args:
        exc_type: Exception type
        exc_value: Exception value
        exc_traceback: Exception traceback
    """
    from stemvoice import LOGS_DIR
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    crash_file = os.path.join(LOGS_DIR, f"stemvoice_crash_{timestamp}.log")

    try:
        with open(crash_file, 'w', encoding='utf-8') as f:
            f.write("Stem Voice Crash Log\n")
            f.write(f"Timestamp: {timestamp}\n")
            f.write(f"Exception Type: {exc_type.__name__}\n")
            f.write(f"Exception Value: {exc_value}\n")
            f.write("\nTraceback:\n")
            traceback.print_exception(exc_type, exc_value, exc_traceback, file=f)
            f.write("\n\nThread Information:\n")
            for thread in threading.enumerate():
                f.write(f"  - {thread.name} (daemon={thread.daemon})\n")

        voice_log("CRASH", f"Crash log saved to {crash_file}", level="ERROR")
    except OSError as e:
        print(f"[CRITICAL] Failed to write crash log: {e}", file=sys.stderr)


def setup_crash_protection():
    """
    Setup global crash protection for the application.

    This should be called once at the start of the application.
    """
    def custom_excepthook(exc_type, exc_value, exc_traceback):
        log_crash(exc_type, exc_value, exc_traceback)
        # Call the original excepthook to still print to stderr
        sys.__excepthook__(exc_type, exc_value, exc_traceback)

    sys.excepthook = custom_excepthook
    voice_log("INIT", "Crash protection enabled")


def safe_call(tag: str, func, *args, **kwargs):
    """Invoke a host callback, logging instead of propagating its failure.

    Returns the callback's result, or None if it raised.
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        name = getattr(func, "__name__", repr(func))
        voice_log(tag, f"Callback {name} failed: {e}", level="ERROR")
        voice_log(tag, traceback.format_exc(), level="DEBUG")
        return None
