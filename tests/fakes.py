"""
In-memory stand-ins for the relay connection and the peer connection.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import List, Optional

from sendrecv.config import PeerIdentity, SessionConfig
from sendrecv.connection import (
    DataChannel,
    MediaBackend,
    PeerConnection,
    SignalingState,
    TransceiverDirection,
)
from sendrecv.errors import MediaError, SdpParseError, TransportError
from sendrecv.wire import SdpKind, SignalingDescription

INVALID_SDP = "not an sdp"


def make_config(peer_id: Optional[str] = "1234", our_id: Optional[str] = None, **kwargs) -> SessionConfig:
    kwargs.setdefault("server_url", "ws://127.0.0.1:8443")
    kwargs.setdefault("ping_interval", 0.01)
    return SessionConfig(identity=PeerIdentity(peer_id=peer_id, our_id=our_id), **kwargs)


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeTransport:
    """Scripted relay connection; frames fed by the test come out of ``messages``."""

    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.sent: List[str] = []
        self.closed = False
        self._open = False
        self._incoming: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self._open

    async def connect(self) -> None:
        if self.fail_connect:
            raise TransportError("Failed to connect to ws://127.0.0.1:8443: refused")
        self._open = True

    def send_text(self, text: str) -> None:
        if not self._open:
            raise TransportError("Signaling connection is not open")
        self.sent.append(text)

    def feed(self, text: str) -> None:
        self._incoming.put_nowait(text)

    def server_close(self) -> None:
        self._open = False
        self._incoming.put_nowait(None)

    async def messages(self):
        while True:
            text = await self._incoming.get()
            if text is None:
                return
            yield text

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self._open = False
        self._incoming.put_nowait(None)


class FakeChannel(DataChannel):
    def __init__(self, label: str = "channel") -> None:
        self._label = label
        self.strings: List[str] = []
        self.data: List[bytes] = []
        self.closed = False

    @property
    def label(self) -> str:
        return self._label

    def send_string(self, text: str) -> None:
        self.strings.append(text)

    def send_data(self, data: bytes) -> None:
        self.data.append(data)

    def close(self) -> None:
        self.closed = True


_handles = itertools.count(1)


@dataclass(eq=False)
class FakeElement:
    kind: str
    source: str
    id: int = field(default_factory=lambda: next(_handles))
    locked: bool = False
    state: str = "null"


@dataclass(eq=False)
class FakeSink:
    kind: str
    direction: TransceiverDirection = TransceiverDirection.SENDRECV
    released: bool = False


class FakePeer(PeerConnection, MediaBackend):
    """
    Records every call.  Descriptions resolve immediately unless the matching
    ``hold_*`` flag is set, in which case the pending futures are collected
    for the test to resolve.
    """

    def __init__(self) -> None:
        self.state = SignalingState.STABLE
        self.calls: List[tuple] = []
        self.ops: List[str] = []
        self.started = False
        self.stopped = False
        self.start_error: Optional[Exception] = None
        self.fail_on: Optional[str] = None
        self.hold_offer = False
        self.hold_local = False
        self.pending: List[asyncio.Future] = []
        self.candidates: List[tuple] = []
        self.sinks: List[FakeSink] = []

    # PeerConnection

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    @property
    def signaling_state(self) -> SignalingState:
        return self.state

    def create_offer(self):
        self.calls.append(("create_offer",))
        return self._future(SignalingDescription.offer("v=0 local-offer"), hold=self.hold_offer)

    def create_answer(self):
        self.calls.append(("create_answer",))
        return self._future(SignalingDescription.answer("v=0 local-answer"))

    def set_local_description(self, description: SignalingDescription):
        self.calls.append(("set_local_description", description.kind))
        if description.kind is SdpKind.OFFER:
            new_state = SignalingState.HAVE_LOCAL_OFFER
        else:
            new_state = SignalingState.STABLE
        future = self._future(None, hold=self.hold_local)
        if future.done():
            self.state = new_state
        else:
            future.add_done_callback(lambda _future: setattr(self, "state", new_state))
        return future

    def set_remote_description(self, description: SignalingDescription):
        self.calls.append(("set_remote_description", description.kind))
        future = asyncio.get_running_loop().create_future()
        if description.sdp == INVALID_SDP:
            future.set_exception(SdpParseError("Could not parse SDP"))
            return future
        if description.kind is SdpKind.OFFER:
            self.state = SignalingState.HAVE_REMOTE_OFFER
        else:
            self.state = SignalingState.STABLE
        future.set_result(None)
        return future

    def add_ice_candidate(self, mline_index: int, candidate: str) -> None:
        self.candidates.append((mline_index, candidate))

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def _future(self, value, *, hold: bool = False) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        if hold:
            self.pending.append(future)
        else:
            future.set_result(value)
        return future

    # MediaBackend

    def build_branch(self, kind: str, source: str) -> FakeElement:
        self._op("build_branch")
        return FakeElement(kind, source)

    def add_branch(self, element: FakeElement) -> None:
        self._op("add_branch")

    def set_locked_state(self, element: FakeElement, locked: bool) -> None:
        self._op("lock" if locked else "unlock")
        element.locked = locked

    def request_sink(self, kind: str) -> FakeSink:
        self._op("request_sink")
        sink = FakeSink(kind)
        self.sinks.append(sink)
        return sink

    def link(self, element: FakeElement, sink: FakeSink) -> None:
        self._op("link")

    def sync_state_with_parent(self, element: FakeElement) -> None:
        self._op("sync_state_with_parent")
        element.state = "playing"

    def send_eos(self, element: FakeElement) -> None:
        self._op("send_eos")

    def get_direction(self, sink: FakeSink) -> TransceiverDirection:
        self._op("get_direction")
        return sink.direction

    def set_direction(self, sink: FakeSink, direction: TransceiverDirection) -> None:
        self._op("set_direction")
        sink.direction = direction

    def set_null_state(self, element: FakeElement) -> None:
        self._op("set_null_state")
        element.state = "null"

    def unlink(self, element: FakeElement, sink: FakeSink) -> None:
        self._op("unlink")

    def release_sink(self, sink: FakeSink) -> None:
        self._op("release_sink")
        sink.released = True

    def remove_branch(self, element: FakeElement) -> None:
        self._op("remove_branch")

    def _op(self, name: str) -> None:
        self.ops.append(name)
        if self.fail_on == name:
            raise MediaError(f"{name} failed")
