"""
Control protocol spoken over the data channels once the call is up.

Each channel, whether we created it or the browser did, gets a liveness task
once it opens: every ``ping_interval`` seconds it sends ``PING <n>`` followed
by a small binary payload.  Text messages received on any channel are matched
against :data:`COMMANDS` and the resulting media operation is queued on the
session's deferred tasks, never run inside the channel callback.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, TYPE_CHECKING

from .connection import ChannelRole, ChannelState, DataChannel
from .media import MediaAttachmentManager, MediaKind, MediaSource
from .session import SessionState

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .session import Session

LOG = logging.getLogger(__name__)

PING_PAYLOAD = b"data"
PONG_PREFIX = "PONG "


@dataclass(frozen=True)
class MediaCommand:
    action: str
    kind: MediaKind
    source: Optional[MediaSource] = None

    @property
    def label(self) -> str:
        if self.source is None:
            return f"{self.kind.value}-{self.action}"
        return f"{self.kind.value}-{self.action}({self.source.value})"


COMMANDS: Dict[str, MediaCommand] = {
    "RECV VIDEO START TESTPATTERN": MediaCommand("start", MediaKind.VIDEO, MediaSource.TEST_PATTERN),
    "RECV VIDEO START LOOPBACK": MediaCommand("start", MediaKind.VIDEO, MediaSource.LOOPBACK),
    "RECV VIDEO STOP": MediaCommand("stop", MediaKind.VIDEO),
    "RECV AUDIO START": MediaCommand("start", MediaKind.AUDIO, MediaSource.TONE),
    "RECV AUDIO STOP": MediaCommand("stop", MediaKind.AUDIO),
    # Older browser pages only know the test pattern.
    "RECV VIDEO START": MediaCommand("start", MediaKind.VIDEO, MediaSource.TEST_PATTERN),
}


@dataclass(eq=False)
class ChannelRecord:
    channel: DataChannel
    role: ChannelRole
    state: ChannelState = ChannelState.OPENING
    ping_count: int = 0
    ping_task: Optional[asyncio.Task] = None


class DataChannelController:
    def __init__(
        self,
        session: "Session",
        media: MediaAttachmentManager,
        *,
        ping_interval: float = 2.0,
    ) -> None:
        self._session = session
        self._media = media
        self.ping_interval = ping_interval
        self._channels: Dict[int, ChannelRecord] = {}

    def register(self, channel: DataChannel, role: ChannelRole) -> ChannelRecord:
        record = self._channels.get(id(channel))
        if record is None:
            record = ChannelRecord(channel=channel, role=role)
            self._channels[id(channel)] = record
            LOG.info("Tracking %s data channel '%s'", role.value, channel.label)
        return record

    def record(self, channel: DataChannel) -> Optional[ChannelRecord]:
        return self._channels.get(id(channel))

    def on_open(self, channel: DataChannel) -> None:
        record = self._record_for(channel)
        if record.ping_task is not None:
            LOG.debug("Data channel '%s' opened again; ignoring", channel.label)
            return
        LOG.info("Data channel '%s' opened", channel.label)
        record.state = ChannelState.OPEN
        record.ping_count = 0
        record.ping_task = self._session.spawn(
            self._ping_loop(record), name=f"ping-{record.role.value}-{channel.label}"
        )

    def on_close(self, channel: DataChannel) -> None:
        self._mark_closed(channel)
        self._session.states.shutdown("Data channel closed", SessionState.PEER_CALL_STOPPED)

    def on_error(self, channel: DataChannel, error: Optional[str] = None) -> None:
        self._mark_closed(channel)
        message = "Data channel error" if not error else f"Data channel error: {error}"
        self._session.states.shutdown(message, SessionState.PEER_CALL_ERROR)

    def on_message_string(self, channel: DataChannel, text: str) -> None:
        if text.startswith(PONG_PREFIX):
            LOG.debug("Received %s on '%s'", text, channel.label)
            return
        LOG.info("Received data channel message: %s", text)
        command = COMMANDS.get(text)
        if command is None:
            LOG.warning("Unknown data channel command '%s'", text)
            return
        if command.action == "start":
            self._session.tasks.schedule(self._media.start, command.kind, command.source, name=command.label)
        else:
            self._session.tasks.schedule(self._media.stop, command.kind, name=command.label)

    def close(self) -> None:
        for record in self._channels.values():
            if record.ping_task is not None and not record.ping_task.done():
                record.ping_task.cancel()
            record.state = ChannelState.CLOSED

    # ------------------------------------------------------------------ helpers

    def _record_for(self, channel: DataChannel) -> ChannelRecord:
        record = self._channels.get(id(channel))
        if record is None:
            # Events can name a channel that was never announced, e.g. our own
            # send channel when the runtime reports it before the announcement.
            record = self.register(channel, ChannelRole.SEND)
        return record

    def _mark_closed(self, channel: DataChannel) -> None:
        record = self._channels.get(id(channel))
        if record is None:
            return
        record.state = ChannelState.CLOSED
        if record.ping_task is not None and not record.ping_task.done():
            record.ping_task.cancel()

    async def _ping_loop(self, record: ChannelRecord) -> None:
        while record.state is ChannelState.OPEN:
            await asyncio.sleep(self.ping_interval)
            if record.state is not ChannelState.OPEN:
                break
            ping = f"PING {record.ping_count}"
            record.ping_count += 1
            LOG.debug("Sending %s on '%s'", ping, record.channel.label)
            record.channel.send_string(ping)
            record.channel.send_data(PING_PAYLOAD)


__all__ = ["COMMANDS", "ChannelRecord", "DataChannelController", "MediaCommand", "PING_PAYLOAD"]
