"""
Interface of the peer-connection collaborator.

The negotiation core never touches the media engine directly.  It talks to a
:class:`PeerConnection` for the offer/answer machinery and to a
:class:`MediaBackend` for attaching and detaching outbound branches.  Both are
implemented by :mod:`sendrecv.runtime` on top of GStreamer's ``webrtcbin`` and
by simple fakes in the test-suite.

Asynchronous operations return :class:`asyncio.Future` objects that are
resolved on the session's event loop.  Returning futures rather than
coroutines lets callers fire-and-forget a request (the local offer is applied
that way) without leaving un-awaited coroutines behind.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from .wire import SignalingDescription


class SignalingState(str, Enum):
    STABLE = "stable"
    CLOSED = "closed"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    HAVE_LOCAL_PRANSWER = "have-local-pranswer"
    HAVE_REMOTE_PRANSWER = "have-remote-pranswer"


class TransceiverDirection(str, Enum):
    NONE = "none"
    INACTIVE = "inactive"
    SENDONLY = "sendonly"
    RECVONLY = "recvonly"
    SENDRECV = "sendrecv"


class ChannelRole(str, Enum):
    SEND = "send"
    RECEIVE = "receive"


class ChannelState(str, Enum):
    OPENING = "opening"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class DataChannel(ABC):
    """A bidirectional message channel carried by the peer connection."""

    @property
    @abstractmethod
    def label(self) -> str:
        ...

    @abstractmethod
    def send_string(self, text: str) -> None:
        ...

    @abstractmethod
    def send_data(self, data: bytes) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class PeerConnection(ABC):
    """Offer/answer and trickle ICE surface of the peer connection."""

    @abstractmethod
    def start(self) -> None:
        """Build and start the connection; raises on failure."""

    @abstractmethod
    def stop(self) -> None:
        """Release the connection.  Safe to call more than once."""

    @property
    @abstractmethod
    def signaling_state(self) -> SignalingState:
        ...

    @abstractmethod
    def create_offer(self) -> "asyncio.Future[SignalingDescription]":
        ...

    @abstractmethod
    def create_answer(self) -> "asyncio.Future[SignalingDescription]":
        ...

    @abstractmethod
    def set_local_description(self, description: SignalingDescription) -> "asyncio.Future[None]":
        ...

    @abstractmethod
    def set_remote_description(self, description: SignalingDescription) -> "asyncio.Future[None]":
        """
        Apply a remote description.

        The returned future fails with :class:`sendrecv.errors.SdpParseError`
        when the SDP text cannot be parsed.
        """

    @abstractmethod
    def add_ice_candidate(self, mline_index: int, candidate: str) -> None:
        ...


class MediaBackend(ABC):
    """
    Structural operations on outbound media branches.

    ``element`` values are opaque branch handles produced by
    :meth:`build_branch`; ``sink`` values are opaque send endpoints produced by
    :meth:`request_sink`.
    """

    @abstractmethod
    def build_branch(self, kind: str, source: str) -> Any:
        ...

    @abstractmethod
    def add_branch(self, element: Any) -> None:
        ...

    @abstractmethod
    def set_locked_state(self, element: Any, locked: bool) -> None:
        """Exclude (or re-allow) state changes driven by the parent pipeline."""

    @abstractmethod
    def request_sink(self, kind: str) -> Any:
        ...

    @abstractmethod
    def link(self, element: Any, sink: Any) -> None:
        ...

    @abstractmethod
    def sync_state_with_parent(self, element: Any) -> None:
        ...

    @abstractmethod
    def send_eos(self, element: Any) -> None:
        ...

    @abstractmethod
    def get_direction(self, sink: Any) -> TransceiverDirection:
        ...

    @abstractmethod
    def set_direction(self, sink: Any, direction: TransceiverDirection) -> None:
        ...

    @abstractmethod
    def set_null_state(self, element: Any) -> None:
        ...

    @abstractmethod
    def unlink(self, element: Any, sink: Any) -> None:
        ...

    @abstractmethod
    def release_sink(self, sink: Any) -> None:
        ...

    @abstractmethod
    def remove_branch(self, element: Any) -> None:
        ...


__all__ = [
    "ChannelRole",
    "ChannelState",
    "DataChannel",
    "MediaBackend",
    "PeerConnection",
    "SignalingState",
    "TransceiverDirection",
]
