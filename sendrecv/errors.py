"""
Exception hierarchy shared by the signaling peer.
"""

from __future__ import annotations


class SessionError(RuntimeError):
    """Base class for signaling session errors."""


class AppStateViolation(SessionError):
    """Raised when an operation is attempted in a session state that forbids it."""


class ConfigurationError(SessionError):
    """Raised when the peer configuration is inconsistent."""


class TransportError(SessionError):
    """Raised when the signaling server connection cannot be used."""


class MalformedMessage(SessionError, ValueError):
    """Raised when a signaling payload cannot be decoded."""


class SdpParseError(MalformedMessage):
    """Raised when a session description blob is not valid SDP."""


class MediaError(SessionError):
    """Raised when a media branch cannot be attached or detached."""


class CollaboratorUnavailable(SessionError):
    """Raised when the media runtime backing the peer connection is missing."""


__all__ = [
    "AppStateViolation",
    "CollaboratorUnavailable",
    "ConfigurationError",
    "MalformedMessage",
    "MediaError",
    "SdpParseError",
    "SessionError",
    "TransportError",
]
