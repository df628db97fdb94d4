"""
Signaling relay server pairing two peers and forwarding their frames.
"""

from __future__ import annotations

from .server import RelayManager, RelayPeer, create_app

__all__ = ["RelayManager", "RelayPeer", "create_app"]
