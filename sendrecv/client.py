"""
Signaling peer: routes relay frames and collaborator events to the
negotiation, ICE, data channel and media components of one session.
"""

from __future__ import annotations

import logging
import random
from typing import Optional

from .connection import MediaBackend, PeerConnection
from .datachannel import DataChannelController
from .errors import AppStateViolation, MalformedMessage, TransportError
from .events import (
    DataChannelAnnounced,
    DataChannelClosed,
    DataChannelErrored,
    DataChannelMessage,
    DataChannelOpened,
    EventQueue,
    LocalIceCandidate,
    NegotiationNeeded,
    PeerEvent,
    PipelineFailed,
)
from .ice import ICERelay
from .media import MediaAttachmentManager
from .negotiation import NegotiationController
from .session import Session, SessionState, classify_server_error
from .transport import SignalingTransport
from .wire import (
    IceCandidate,
    SdpKind,
    ServerCommand,
    ServerControl,
    SignalingDescription,
    decode_server_message,
    encode_hello,
    encode_session,
)

LOG = logging.getLogger(__name__)


def random_peer_id() -> str:
    return str(random.randint(10, 9999))


class SendRecvClient:
    """
    Drive one session from connect to shutdown.

    ``peer`` and ``media_backend`` are usually the same GStreamer object; they
    are separate arguments so tests can substitute either.
    """

    def __init__(
        self,
        session: Session,
        peer: PeerConnection,
        media_backend: MediaBackend,
        events: EventQueue,
        transport: Optional[SignalingTransport] = None,
    ) -> None:
        self.session = session
        self.peer = peer
        self.events = events
        config = session.config
        self.transport = transport or SignalingTransport(config.server_url, verify_tls=config.verify_tls)
        self.negotiation = NegotiationController(session, peer)
        self.ice = ICERelay(session, peer)
        self.media = MediaAttachmentManager(session, media_backend)
        self.channels = DataChannelController(session, self.media, ping_interval=config.ping_interval)
        self.our_id = config.identity.our_id or random_peer_id()
        self.call_started = False

    @property
    def states(self):
        return self.session.states

    async def run(self) -> int:
        """Run the session to completion and return the process exit code."""

        self.states.transition(SessionState.SERVER_CONNECTING)
        try:
            await self.transport.connect()
        except TransportError as exc:
            self.states.shutdown(str(exc), SessionState.SERVER_CONNECTION_ERROR)
        else:
            self.session.transport = self.transport
            self.states.transition(SessionState.SERVER_CONNECTED)
            self.register()
            self.session.spawn(self._read_server(), name="signaling-reader")
            self.session.spawn(self._dispatch_events(), name="peer-events")

        await self.session.wait_closed()
        self._teardown()
        LOG.info("Session finished in state %s", self.states.state.name)
        return self.states.exit_code

    def register(self) -> None:
        LOG.info("Registering id %s with server", self.our_id)
        self.states.transition(SessionState.SERVER_REGISTERING)
        self.session.send(encode_hello(self.our_id))

    def setup_call(self) -> None:
        peer_id = self.session.config.identity.peer_id
        LOG.info("Setting up signaling server call with %s", peer_id)
        self.states.transition(SessionState.PEER_CONNECTING)
        self.session.send(encode_session(peer_id))

    def start_call(self) -> bool:
        if self.call_started:
            return True
        LOG.info("Starting pipeline")
        try:
            self.peer.start()
        except Exception as exc:
            LOG.debug("Peer connection failed to start", exc_info=True)
            self.states.shutdown(f"ERROR: failed to start pipeline: {exc}", SessionState.PEER_CALL_ERROR)
            return False
        self.call_started = True
        return True

    # ------------------------------------------------------------------ server messages

    def handle_server_message(self, text: str) -> None:
        try:
            message = decode_server_message(text)
        except MalformedMessage as exc:
            LOG.warning("%s, ignoring", exc)
            return

        if isinstance(message, ServerControl):
            self._on_control(message)
        elif isinstance(message, SignalingDescription):
            self._on_description(message)
        elif isinstance(message, IceCandidate):
            self._on_remote_candidate(message)

    def on_server_closed(self) -> None:
        if self.states.shutting_down:
            return
        state = self.states.state
        if state >= SessionState.PEER_CALL_STARTED:
            self.states.shutdown("Server connection closed", SessionState.SERVER_CLOSED)
        else:
            self.states.shutdown(
                f"ERROR: Server connection closed unexpectedly in state {state.name}",
                classify_server_error(state),
            )

    def _on_control(self, message: ServerControl) -> None:
        states = self.states
        command = message.command
        if command is ServerCommand.HELLO:
            if states.state is not SessionState.SERVER_REGISTERING:
                states.shutdown("ERROR: Received HELLO when not registering", SessionState.ERROR)
                return
            states.transition(SessionState.SERVER_REGISTERED)
            LOG.info("Registered with server")
            if self.session.config.identity.initiates:
                self.setup_call()
            else:
                LOG.info("Waiting for connection from peer (our-id: %s)", self.our_id)
        elif command is ServerCommand.SESSION_OK:
            if states.state is not SessionState.PEER_CONNECTING:
                states.shutdown("ERROR: Received SESSION_OK when not calling", SessionState.PEER_CONNECTION_ERROR)
                return
            states.transition(SessionState.PEER_CONNECTED)
            self.start_call()
        elif command is ServerCommand.OFFER_REQUEST:
            LOG.info("Received OFFER_REQUEST, sending offer")
            if not self.call_started:
                # Starting the connection raises negotiation-needed by itself.
                self._ensure_call()
            else:
                self.session.tasks.schedule(self._negotiate, name="offer-request")
        elif command is ServerCommand.ERROR:
            states.shutdown(message.text, classify_server_error(states.state))

    def _on_description(self, description: SignalingDescription) -> None:
        if not self._ensure_call():
            return
        if self.states.state is not SessionState.PEER_NEGOTIATING:
            self.states.transition(SessionState.PEER_NEGOTIATING)
        if description.kind is SdpKind.OFFER:
            self.session.spawn(self.negotiation.on_remote_offer(description), name="remote-offer")
        else:
            self.session.spawn(self.negotiation.on_remote_answer(description), name="remote-answer")

    def _on_remote_candidate(self, candidate: IceCandidate) -> None:
        self.ice.on_remote_candidate(candidate)

    def _ensure_call(self) -> bool:
        if self.call_started:
            return True
        if self.states.state < SessionState.SERVER_REGISTERED:
            LOG.warning("Peer message received in state %s, ignoring", self.states.state.name)
            return False
        if self.states.state < SessionState.PEER_CONNECTED:
            self.states.transition(SessionState.PEER_CONNECTED)
        return self.start_call()

    def _negotiate(self) -> None:
        self.session.spawn(self.negotiation.on_negotiation_needed(), name="negotiation")

    async def _read_server(self) -> None:
        async for text in self.transport.messages():
            self.handle_server_message(text)
            if self.states.shutting_down:
                return
        self.on_server_closed()

    # ------------------------------------------------------------------ collaborator events

    def dispatch(self, event: PeerEvent) -> None:
        if isinstance(event, NegotiationNeeded):
            LOG.info("Negotiation needed")
            self._negotiate()
        elif isinstance(event, LocalIceCandidate):
            self.ice.on_local_candidate(event.mline_index, event.candidate)
        elif isinstance(event, DataChannelAnnounced):
            self.channels.register(event.channel, event.role)
        elif isinstance(event, DataChannelOpened):
            self.channels.on_open(event.channel)
        elif isinstance(event, DataChannelClosed):
            self.channels.on_close(event.channel)
        elif isinstance(event, DataChannelErrored):
            self.channels.on_error(event.channel, event.error)
        elif isinstance(event, DataChannelMessage):
            self.channels.on_message_string(event.channel, event.text)
        elif isinstance(event, PipelineFailed):
            self.states.shutdown(f"ERROR: {event.message}", SessionState.PEER_CALL_ERROR)
        else:  # pragma: no cover - defensive
            LOG.warning("Unhandled peer event %r", event)

    async def _dispatch_events(self) -> None:
        while not self.states.shutting_down:
            event = await self.events.get()
            try:
                self.dispatch(event)
            except AppStateViolation:
                return
            except Exception:
                LOG.exception("Failed to handle %s", type(event).__name__)

    def _teardown(self) -> None:
        self.events.close()
        self.channels.close()
        self.media.stop_all()
        try:
            self.peer.stop()
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Error while stopping the peer connection")


__all__ = ["SendRecvClient", "random_peer_id"]
