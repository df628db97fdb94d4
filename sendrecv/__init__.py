"""
WebRTC send/receive signaling peer.

The peer registers with a signaling relay, negotiates a WebRTC call with one
remote browser and lets that browser start and stop outbound media over a
data channel.  Media itself is handled by GStreamer's ``webrtcbin``.
"""

from __future__ import annotations

from .config import PeerIdentity, SessionConfig, load_config
from .errors import AppStateViolation, SessionError
from .session import Session, SessionState

__all__ = [
    "AppStateViolation",
    "PeerIdentity",
    "Session",
    "SessionConfig",
    "SessionError",
    "SessionState",
    "load_config",
]

__version__ = "0.1.0"
