"""
Relay server connection.

One persistent websocket carries every frame exchanged with the relay.
Outbound frames go through a single queue drained by a writer task, so
callers on the event loop can send without awaiting and frames leave in the
order they were queued.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .errors import TransportError

LOG = logging.getLogger(__name__)

ConnectCallable = Callable[..., Awaitable[Any]]

CLOSE_FLUSH_TIMEOUT = 1.0


class SignalingTransport:
    """Duplex text connection to the signaling relay."""

    def __init__(
        self,
        url: str,
        *,
        verify_tls: bool = True,
        connect: Optional[ConnectCallable] = None,
    ) -> None:
        self.url = url
        self.verify_tls = verify_tls
        self._connect = connect or websockets.connect
        self._connection: Optional[Any] = None
        self._outbound: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.url.startswith("wss://"):
            return None
        context = ssl.create_default_context()
        if not self.verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def connect(self) -> None:
        if self._connection is not None:
            return
        kwargs = {}
        context = self.ssl_context()
        if context is not None:
            kwargs["ssl"] = context
        LOG.info("Connecting to signaling server %s", self.url)
        try:
            self._connection = await self._connect(self.url, **kwargs)
        except (InvalidURI, InvalidHandshake, OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"Failed to connect to {self.url}: {exc}") from exc
        self._open = True
        self._writer = asyncio.create_task(self._write_loop(), name="signaling-writer")
        LOG.info("Connected to signaling server")

    def send_text(self, text: str) -> None:
        if not self._open:
            raise TransportError("Signaling connection is not open")
        self._outbound.put_nowait(text)

    async def messages(self) -> AsyncIterator[str]:
        """
        Yield text frames until the connection closes.
        """

        if self._connection is None:
            raise TransportError("Signaling connection was never opened")
        try:
            async for message in self._connection:
                if isinstance(message, (bytes, bytearray)):
                    LOG.warning("Received unknown binary message, ignoring")
                    continue
                yield message
        except ConnectionClosed as exc:
            LOG.info("Signaling connection closed: %s", exc)
        finally:
            self._open = False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        connection = self._connection
        if connection is None:
            return
        self._open = False
        writer = self._writer
        if writer is not None and not writer.done():
            self._outbound.put_nowait(None)
            try:
                await asyncio.wait_for(writer, timeout=CLOSE_FLUSH_TIMEOUT)
            except asyncio.TimeoutError:
                LOG.debug("Timed out flushing outbound frames before close")
        with contextlib.suppress(ConnectionClosed):
            await connection.close(code=code, reason=reason)
        LOG.debug("Signaling connection closed by us")

    async def _write_loop(self) -> None:
        connection = self._connection
        while True:
            text = await self._outbound.get()
            if text is None:
                break
            try:
                await connection.send(text)
            except ConnectionClosed:
                LOG.debug("Signaling connection closed while sending; dropping %.60s", text)
                self._open = False
                break


__all__ = ["SignalingTransport"]
