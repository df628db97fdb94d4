"""
Offer/answer exchange with the remote peer.

This side always tries its own offer when the peer connection reports that
negotiation is needed.  Glare is resolved with two checks only: the
``making_offer`` flag and the connection's signaling state.  A local offer
that completes after a remote offer has been applied is dropped, and a remote
offer that arrives while our offer is in flight is ignored; the remote side is
expected to retry.  No rollback or retry timer is involved, the next
negotiation-needed signal drives any retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .connection import PeerConnection, SignalingState
from .errors import SdpParseError
from .session import SessionState
from .wire import SignalingDescription, encode_description

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .session import Session

LOG = logging.getLogger(__name__)


class NegotiationController:
    def __init__(self, session: "Session", peer: PeerConnection) -> None:
        self._session = session
        self._peer = peer
        self.making_offer = False

    async def on_negotiation_needed(self) -> None:
        if self.making_offer:
            LOG.debug("Offer already in flight; skipping negotiation-needed")
            return
        self._session.states.transition(SessionState.PEER_NEGOTIATING)
        self.making_offer = True
        try:
            offer = await self._peer.create_offer()
        except Exception:
            self.making_offer = False
            raise
        self.on_offer_created(offer)

    def on_offer_created(self, offer: SignalingDescription) -> None:
        if self._peer.signaling_state is not SignalingState.STABLE:
            LOG.info(
                "Dropping local offer; signaling state is %s",
                self._peer.signaling_state.value,
            )
            self.making_offer = False
            return
        try:
            applied = self._peer.set_local_description(offer)
            applied.add_done_callback(_log_failure("set-local-description (offer)"))
            self.send_description(offer)
        finally:
            self.making_offer = False

    async def on_remote_offer(self, offer: SignalingDescription) -> None:
        if self._peer.signaling_state is not SignalingState.STABLE:
            LOG.info(
                "Ignoring remote offer; signaling state is %s",
                self._peer.signaling_state.value,
            )
            return
        LOG.info("Received offer:\n%s", offer.sdp)
        try:
            await self._peer.set_remote_description(offer)
        except SdpParseError as exc:
            LOG.error("Dropping remote offer: %s", exc)
            return
        answer = await self._peer.create_answer()
        await self.on_answer_created(answer)

    async def on_answer_created(self, answer: SignalingDescription) -> None:
        # The answer must not reach the peer before it is our local
        # description, otherwise our candidates could precede it.
        await self._peer.set_local_description(answer)
        self.send_description(answer)

    async def on_remote_answer(self, answer: SignalingDescription) -> None:
        LOG.info("Received answer:\n%s", answer.sdp)
        try:
            await self._peer.set_remote_description(answer)
        except SdpParseError as exc:
            LOG.error("Dropping remote answer: %s", exc)
            return
        self._session.states.transition(SessionState.PEER_CALL_STARTED)

    def send_description(self, description: SignalingDescription) -> None:
        self._session.states.require_at_least(
            SessionState.PEER_NEGOTIATING, "Can't send SDP to peer, not in call"
        )
        LOG.info("Sending %s:\n%s", description.kind.value, description.sdp)
        self._session.send(encode_description(description))


def _log_failure(operation: str):
    def _callback(future: "asyncio.Future") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOG.warning("%s failed: %s", operation, exc)

    return _callback


__all__ = ["NegotiationController"]
