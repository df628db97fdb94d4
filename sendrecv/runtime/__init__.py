"""
GStreamer runtime backing the peer connection.
"""

from __future__ import annotations

from .branches import branch_description, incoming_description
from .gst import REQUIRED_PLUGINS, check_plugins, ensure_initialised, is_available
from .webrtcbin import GstDataChannel, GstPeerConnection

__all__ = [
    "GstDataChannel",
    "GstPeerConnection",
    "REQUIRED_PLUGINS",
    "branch_description",
    "check_plugins",
    "ensure_initialised",
    "incoming_description",
    "is_available",
]
