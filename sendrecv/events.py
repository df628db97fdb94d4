"""
Typed events emitted by the peer-connection collaborator.

GStreamer delivers signals on its own streaming threads.  Instead of running
protocol logic inside those callbacks, the runtime turns every signal into one
of the small frozen events below and posts it to an :class:`EventQueue`.  The
client consumes the queue on the asyncio loop, so one handler runs to
completion before the next one starts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from .connection import ChannelRole, DataChannel

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NegotiationNeeded:
    pass


@dataclass(frozen=True, slots=True)
class LocalIceCandidate:
    mline_index: int
    candidate: str


@dataclass(frozen=True, slots=True)
class DataChannelAnnounced:
    channel: DataChannel
    role: ChannelRole


@dataclass(frozen=True, slots=True)
class DataChannelOpened:
    channel: DataChannel


@dataclass(frozen=True, slots=True)
class DataChannelClosed:
    channel: DataChannel


@dataclass(frozen=True, slots=True)
class DataChannelErrored:
    channel: DataChannel
    error: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DataChannelMessage:
    channel: DataChannel
    text: str


@dataclass(frozen=True, slots=True)
class PipelineFailed:
    message: str


PeerEvent = Union[
    NegotiationNeeded,
    LocalIceCandidate,
    DataChannelAnnounced,
    DataChannelOpened,
    DataChannelClosed,
    DataChannelErrored,
    DataChannelMessage,
    PipelineFailed,
]


class EventQueue:
    """
    FIFO of :data:`PeerEvent` values bound to one event loop.

    :meth:`post` may be called from any thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._queue: "asyncio.Queue[PeerEvent]" = asyncio.Queue()
        self._closed = False

    def post(self, event: PeerEvent) -> None:
        if self._closed:
            LOG.debug("Dropping %s posted after close", type(event).__name__)
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            # The loop has already been closed during shutdown.
            LOG.debug("Event loop closed; dropping %s", type(event).__name__)

    def post_nowait(self, event: PeerEvent) -> None:
        """Enqueue from the loop thread itself."""
        if not self._closed:
            self._queue.put_nowait(event)

    async def get(self) -> PeerEvent:
        return await self._queue.get()

    def close(self) -> None:
        self._closed = True

    def __len__(self) -> int:
        return self._queue.qsize()


__all__ = [
    "DataChannelAnnounced",
    "DataChannelClosed",
    "DataChannelErrored",
    "DataChannelMessage",
    "DataChannelOpened",
    "EventQueue",
    "LocalIceCandidate",
    "NegotiationNeeded",
    "PeerEvent",
    "PipelineFailed",
]
