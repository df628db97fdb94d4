import asyncio
import json

import pytest

from sendrecv.errors import AppStateViolation
from sendrecv.ice import ICERelay
from sendrecv.session import Session, SessionState
from sendrecv.wire import IceCandidate

from fakes import FakePeer, FakeTransport, make_config


async def _session(state: SessionState):
    session = Session(make_config(), loop=asyncio.get_running_loop())
    transport = FakeTransport()
    await transport.connect()
    session.transport = transport
    session.states.transition(state)
    return session, transport


def test_local_candidates_are_sent_one_per_message_in_order() -> None:
    async def scenario() -> None:
        session, transport = await _session(SessionState.PEER_NEGOTIATING)
        relay = ICERelay(session, FakePeer())

        relay.on_local_candidate(0, "candidate:1 1 UDP 1 10.0.0.1 5000 typ host")
        relay.on_local_candidate(0, "candidate:1 1 UDP 1 10.0.0.1 5000 typ host")
        relay.on_local_candidate(1, "candidate:2 1 UDP 1 10.0.0.2 5002 typ srflx")

        messages = [json.loads(text)["ice"] for text in transport.sent]
        assert [m["sdpMLineIndex"] for m in messages] == [0, 0, 1]
        assert messages[2]["candidate"].endswith("typ srflx")

    asyncio.run(scenario())


def test_local_candidate_before_negotiation_is_fatal() -> None:
    async def scenario() -> None:
        session, transport = await _session(SessionState.PEER_CONNECTED)
        relay = ICERelay(session, FakePeer())

        with pytest.raises(AppStateViolation, match="Can't send ICE, not in call"):
            relay.on_local_candidate(0, "candidate:1")

        assert transport.sent == []
        assert session.state is SessionState.ERROR

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "state",
    [SessionState.SERVER_REGISTERED, SessionState.PEER_NEGOTIATING, SessionState.PEER_CALL_STARTED],
)
def test_remote_candidates_are_applied_in_any_state(state: SessionState) -> None:
    async def scenario() -> None:
        session, _transport = await _session(state)
        peer = FakePeer()
        relay = ICERelay(session, peer)

        relay.on_remote_candidate(IceCandidate(sdp_mline_index=2, candidate="candidate:9"))

        assert peer.candidates == [(2, "candidate:9")]
        assert not session.stopped.is_set()

    asyncio.run(scenario())
