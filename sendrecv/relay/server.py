"""
FastAPI signaling relay.

Peers register with ``HELLO <uid>``, ask to be paired with ``SESSION <uid>``
and, once paired, every frame one of them sends is forwarded verbatim to the
other.  The relay never looks inside the forwarded frames.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

LOG = logging.getLogger(__name__)

PROTOCOL_ERROR = 1002


@dataclass(eq=False)
class RelayPeer:
    uid: str
    websocket: WebSocket
    partner: Optional[str] = None

    @property
    def in_session(self) -> bool:
        return self.partner is not None


class RelayManager:
    """Registry of connected peers and their pairings."""

    def __init__(self) -> None:
        self.peers: Dict[str, RelayPeer] = {}

    async def run(self, websocket: WebSocket) -> None:
        try:
            await websocket.accept()
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Failed to accept WebSocket connection")
            return

        peer = await self._register(websocket)
        if peer is None:
            return
        try:
            while True:
                try:
                    text = await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                await self.handle_message(peer, text)
        finally:
            await self._unregister(peer)

    async def handle_message(self, peer: RelayPeer, text: str) -> None:
        if peer.in_session:
            partner = self.peers.get(peer.partner)
            if partner is None:
                LOG.warning("Partner %r of %r is gone; dropping frame", peer.partner, peer.uid)
                peer.partner = None
                return
            LOG.debug("%s -> %s: %.80s", peer.uid, partner.uid, text)
            await partner.websocket.send_text(text)
            return

        command, _, callee = text.partition(" ")
        if command == "SESSION":
            LOG.info("%r command %r", peer.uid, text)
            callee = callee.strip()
            target = self.peers.get(callee)
            if target is None or target is peer:
                await peer.websocket.send_text(f"ERROR peer '{callee}' not found")
                return
            if target.in_session:
                await peer.websocket.send_text(f"ERROR peer '{callee}' busy")
                return
            await peer.websocket.send_text("SESSION_OK")
            peer.partner = target.uid
            target.partner = peer.uid
            LOG.info("Session from %r to %r", peer.uid, target.uid)
            return

        LOG.info("Ignoring unknown message %r from %r", text, peer.uid)
        await peer.websocket.send_text(f"ERROR unknown command '{text}'")

    # ------------------------------------------------------------------ helpers

    async def _register(self, websocket: WebSocket) -> Optional[RelayPeer]:
        try:
            text = await websocket.receive_text()
        except WebSocketDisconnect:
            return None

        command, _, uid = text.partition(" ")
        if command != "HELLO" or not uid or uid in self.peers or uid.split() != [uid]:
            LOG.warning("Invalid hello %r; closing connection", text)
            with contextlib.suppress(RuntimeError):
                await websocket.close(code=PROTOCOL_ERROR, reason="invalid protocol")
            return None

        peer = RelayPeer(uid=uid, websocket=websocket)
        self.peers[uid] = peer
        await websocket.send_text("HELLO")
        LOG.info("Registered peer %r", uid)
        return peer

    async def _unregister(self, peer: RelayPeer) -> None:
        self.peers.pop(peer.uid, None)
        LOG.info("Connection to peer %r closed", peer.uid)
        partner = self.peers.get(peer.partner) if peer.partner else None
        peer.partner = None
        if partner is None:
            return
        partner.partner = None
        LOG.info("Closing connection to %r", partner.uid)
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await partner.websocket.close()


def create_app(
    *,
    manager: Optional[RelayManager] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    relay = manager or RelayManager()

    app = FastAPI(title="sendrecv signaling relay", lifespan=lifespan)
    app.state.relay = relay

    @app.websocket("/")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await relay.run(websocket)

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok", "peers": len(relay.peers)}

    return app


__all__ = ["RelayManager", "RelayPeer", "create_app"]
