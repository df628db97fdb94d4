import asyncio
import json

import pytest

from sendrecv.connection import SignalingState
from sendrecv.errors import AppStateViolation
from sendrecv.negotiation import NegotiationController
from sendrecv.session import Session, SessionState
from sendrecv.wire import SdpKind, SignalingDescription

from fakes import INVALID_SDP, FakePeer, FakeTransport, make_config, settle


async def _negotiating_session(state: SessionState = SessionState.PEER_CONNECTED):
    session = Session(make_config(), loop=asyncio.get_running_loop())
    transport = FakeTransport()
    await transport.connect()
    session.transport = transport
    session.states.transition(state)
    return session, transport


def _sent_descriptions(transport: FakeTransport):
    return [json.loads(text)["sdp"] for text in transport.sent if text.startswith('{"sdp"')]


def test_negotiation_needed_sends_one_offer() -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session()
        peer = FakePeer()
        negotiation = NegotiationController(session, peer)

        await negotiation.on_negotiation_needed()

        assert session.state is SessionState.PEER_NEGOTIATING
        assert negotiation.making_offer is False
        assert ("set_local_description", SdpKind.OFFER) in peer.calls
        assert _sent_descriptions(transport) == [{"type": "offer", "sdp": "v=0 local-offer"}]

    asyncio.run(scenario())


def test_local_offer_is_abandoned_on_glare() -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session()
        peer = FakePeer()
        peer.state = SignalingState.HAVE_REMOTE_OFFER
        negotiation = NegotiationController(session, peer)

        await negotiation.on_negotiation_needed()

        assert negotiation.making_offer is False
        assert peer.called("set_local_description") == 0
        assert transport.sent == []

    asyncio.run(scenario())


def test_remote_offer_applied_while_local_offer_in_flight_wins() -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session()
        peer = FakePeer()
        peer.hold_offer = True
        negotiation = NegotiationController(session, peer)

        task = asyncio.create_task(negotiation.on_negotiation_needed())
        await settle()
        assert negotiation.making_offer is True

        # The browser's offer lands before ours is ready and is being answered.
        peer.hold_local = True
        answering = asyncio.create_task(negotiation.on_remote_offer(SignalingDescription.offer("v=0 remote-offer")))
        await settle()
        assert peer.signaling_state is SignalingState.HAVE_REMOTE_OFFER

        offer_future, answer_applied = peer.pending
        offer_future.set_result(SignalingDescription.offer("v=0 local-offer"))
        await task
        answer_applied.set_result(None)
        await answering

        assert negotiation.making_offer is False
        assert peer.calls.count(("set_local_description", SdpKind.OFFER)) == 0
        assert [d["type"] for d in _sent_descriptions(transport)] == ["answer"]

    asyncio.run(scenario())


def test_duplicate_negotiation_needed_is_skipped() -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session()
        peer = FakePeer()
        peer.hold_offer = True
        negotiation = NegotiationController(session, peer)

        first = asyncio.create_task(negotiation.on_negotiation_needed())
        await settle()
        await negotiation.on_negotiation_needed()
        assert peer.called("create_offer") == 1

        peer.pending.pop().set_result(SignalingDescription.offer("v=0 local-offer"))
        await first

        assert len(_sent_descriptions(transport)) == 1

    asyncio.run(scenario())


def test_remote_offer_ignored_when_not_stable() -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session(SessionState.PEER_NEGOTIATING)
        peer = FakePeer()
        peer.state = SignalingState.HAVE_LOCAL_OFFER
        negotiation = NegotiationController(session, peer)

        await negotiation.on_remote_offer(SignalingDescription.offer("v=0 remote-offer"))

        assert peer.calls == []
        assert transport.sent == []
        assert not session.stopped.is_set()

    asyncio.run(scenario())


def test_answer_is_sent_only_after_local_description_applies() -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session(SessionState.PEER_NEGOTIATING)
        peer = FakePeer()
        peer.hold_local = True
        negotiation = NegotiationController(session, peer)

        task = asyncio.create_task(negotiation.on_remote_offer(SignalingDescription.offer("v=0 remote-offer")))
        await settle()

        assert [call[0] for call in peer.calls] == [
            "set_remote_description",
            "create_answer",
            "set_local_description",
        ]
        assert transport.sent == []

        peer.pending.pop().set_result(None)
        await task

        assert _sent_descriptions(transport) == [{"type": "answer", "sdp": "v=0 local-answer"}]

    asyncio.run(scenario())


def test_remote_answer_starts_the_call() -> None:
    async def scenario() -> None:
        session, _transport = await _negotiating_session(SessionState.PEER_NEGOTIATING)
        peer = FakePeer()
        negotiation = NegotiationController(session, peer)

        await negotiation.on_remote_answer(SignalingDescription.answer("v=0 remote-answer"))

        assert session.state is SessionState.PEER_CALL_STARTED
        assert peer.calls == [("set_remote_description", SdpKind.ANSWER)]

    asyncio.run(scenario())


@pytest.mark.parametrize("kind", [SdpKind.OFFER, SdpKind.ANSWER])
def test_unparseable_remote_sdp_is_dropped(kind: SdpKind) -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session(SessionState.PEER_NEGOTIATING)
        peer = FakePeer()
        negotiation = NegotiationController(session, peer)
        description = SignalingDescription(kind=kind, sdp=INVALID_SDP)

        if kind is SdpKind.OFFER:
            await negotiation.on_remote_offer(description)
        else:
            await negotiation.on_remote_answer(description)

        assert session.state is SessionState.PEER_NEGOTIATING
        assert not session.stopped.is_set()
        assert peer.called("create_answer") == 0
        assert transport.sent == []

    asyncio.run(scenario())


def test_sending_sdp_outside_a_call_is_a_protocol_error() -> None:
    async def scenario() -> None:
        session, transport = await _negotiating_session(SessionState.SERVER_REGISTERED)
        negotiation = NegotiationController(session, FakePeer())

        with pytest.raises(AppStateViolation):
            negotiation.send_description(SignalingDescription.offer("v=0"))

        assert session.state is SessionState.ERROR
        assert transport.sent == []

    asyncio.run(scenario())
