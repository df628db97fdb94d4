"""
Trickle ICE relay.

Candidates flow independently of the description exchange: every local
candidate is sent as soon as it is produced, and every remote candidate is
handed to the peer connection as soon as it arrives.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .connection import PeerConnection
from .session import SessionState
from .wire import IceCandidate, encode_candidate

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .session import Session

LOG = logging.getLogger(__name__)


class ICERelay:
    def __init__(self, session: "Session", peer: PeerConnection) -> None:
        self._session = session
        self._peer = peer

    def on_local_candidate(self, mline_index: int, candidate: str) -> None:
        self._session.states.require_at_least(
            SessionState.PEER_NEGOTIATING, "Can't send ICE, not in call"
        )
        message = IceCandidate(sdp_mline_index=mline_index, candidate=candidate)
        LOG.debug("Sending local candidate %d %s", mline_index, candidate)
        self._session.send(encode_candidate(message))

    def on_remote_candidate(self, candidate: IceCandidate) -> None:
        LOG.debug("Adding remote candidate %d %s", candidate.sdp_mline_index, candidate.candidate)
        self._peer.add_ice_candidate(candidate.sdp_mline_index, candidate.candidate)


__all__ = ["ICERelay"]
