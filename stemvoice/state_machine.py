#!/usr/bin/env python3
"""Connection and conversational flow state definitions for Stem Voice."""

from dataclasses import dataclass
from typing import ClassVar, Union


class ConnectionState:
    """Session connection lifecycle."""
    OFFLINE = "offline"        # No session
    CONNECTING = "connecting"  # Microphone granted, waiting for the socket
    ONLINE = "online"          # Socket open and capture running


class FlowMode:
    """Conversational sub-protocol the session is in."""
    IDLE = "idle"
    TOS_VERIFICATION = "tos-verification"
    UPLOAD_CONFIRMATION = "upload-confirmation"
    STEM_SELECTION_PROMPT = "stem-selection-prompt"


class PendingKind:
    UPLOAD = "upload"
    SELECT = "select"


@dataclass(frozen=True)
class PendingAction:
    """UI affordance the host renders when a step needs a manual gesture."""
    kind: str
    label: str


@dataclass(frozen=True)
class Idle:
    mode: ClassVar[str] = FlowMode.IDLE


@dataclass(frozen=True)
class TosVerification:
    """Waiting for the user to accept the announced terms."""
    announced_at: float
    mode: ClassVar[str] = FlowMode.TOS_VERIFICATION


@dataclass(frozen=True)
class UploadConfirmation:
    """Waiting for confirmation to open the file picker."""
    pending_action: PendingAction
    mode: ClassVar[str] = FlowMode.UPLOAD_CONFIRMATION


@dataclass(frozen=True)
class StemSelectionPrompt:
    """Offering the stems of a freshly split song."""
    song_ref: str
    mode: ClassVar[str] = FlowMode.STEM_SELECTION_PROMPT


FlowState = Union[Idle, TosVerification, UploadConfirmation, StemSelectionPrompt]

IDLE = Idle()
