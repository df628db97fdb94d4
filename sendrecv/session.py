"""
Session context and coarse lifecycle state machine.

A :class:`Session` is the single owned context of one signaling peer run.  It
holds the configuration, the event loop, the relay transport, the
:class:`SessionStateMachine` and the :class:`DeferredTasks` queue, and it is
handed explicitly to every component constructor.  Nothing here is global.

Everything runs on one asyncio loop: handlers are plain callbacks or
coroutine steps, and no two of them execute at the same time.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Coroutine, Deque, List, Optional, Set, Tuple, TYPE_CHECKING

from .errors import AppStateViolation

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .config import SessionConfig
    from .transport import SignalingTransport

LOG = logging.getLogger(__name__)


class SessionState(IntEnum):
    UNKNOWN = 0
    ERROR = 1
    SERVER_CONNECTING = 1000
    SERVER_CONNECTION_ERROR = 1001
    SERVER_CONNECTED = 1002
    SERVER_REGISTERING = 2000
    SERVER_REGISTRATION_ERROR = 2001
    SERVER_REGISTERED = 2002
    SERVER_CLOSED = 2003
    PEER_CONNECTING = 3000
    PEER_CONNECTION_ERROR = 3001
    PEER_CONNECTED = 3002
    PEER_NEGOTIATING = 4000
    PEER_CALL_STARTED = 4001
    PEER_CALL_STOPPING = 4002
    PEER_CALL_STOPPED = 4003
    PEER_CALL_ERROR = 4004

    @property
    def is_error(self) -> bool:
        return self in _ERROR_STATES

    @property
    def is_terminal(self) -> bool:
        return self in _ERROR_STATES or self in (SessionState.SERVER_CLOSED, SessionState.PEER_CALL_STOPPED)


_ERROR_STATES = frozenset(
    {
        SessionState.ERROR,
        SessionState.SERVER_CONNECTION_ERROR,
        SessionState.SERVER_REGISTRATION_ERROR,
        SessionState.PEER_CONNECTION_ERROR,
        SessionState.PEER_CALL_ERROR,
    }
)

_SERVER_ERROR_MAP = {
    SessionState.SERVER_CONNECTING: SessionState.SERVER_CONNECTION_ERROR,
    SessionState.SERVER_REGISTERING: SessionState.SERVER_REGISTRATION_ERROR,
    SessionState.PEER_CONNECTING: SessionState.PEER_CONNECTION_ERROR,
    SessionState.PEER_CONNECTED: SessionState.PEER_CALL_ERROR,
    SessionState.PEER_NEGOTIATING: SessionState.PEER_CALL_ERROR,
}


def classify_server_error(state: SessionState) -> SessionState:
    """Map the state in which a server ``ERROR`` arrived to its error sink."""
    return _SERVER_ERROR_MAP.get(state, SessionState.ERROR)


@dataclass(frozen=True)
class DeferredTask:
    name: str
    callback: Callable[..., Any]
    args: Tuple[Any, ...] = ()


class DeferredTasks:
    """
    Work queued from inside collaborator callbacks for the next loop tick.

    Calling into the media engine from the signal that the engine is
    currently delivering is not re-entrant, so such work is appended here and
    executed by :meth:`drain`, which the loop runs once per tick.  Tasks queued
    while draining run on the following tick.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._queue: Deque[DeferredTask] = deque()
        self._handle: Optional[asyncio.Handle] = None

    @property
    def pending(self) -> List[DeferredTask]:
        return list(self._queue)

    def schedule(self, callback: Callable[..., Any], *args: Any, name: Optional[str] = None) -> DeferredTask:
        task = DeferredTask(name=name or getattr(callback, "__name__", repr(callback)), callback=callback, args=args)
        self._queue.append(task)
        if self._handle is None:
            self._handle = self._loop.call_soon(self.drain)
        return task

    def drain(self) -> None:
        self._handle = None
        batch = list(self._queue)
        self._queue.clear()
        for task in batch:
            try:
                task.callback(*task.args)
            except AppStateViolation:
                LOG.debug("Deferred task %s stopped by state violation", task.name)
            except Exception:
                LOG.exception("Deferred task %s failed", task.name)

    def clear(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._queue.clear()


class SessionStateMachine:
    """
    Authoritative lifecycle state of the session.

    The state only moves forward through the connect/register/call phases,
    apart from the ``*Error`` and ``SERVER_CLOSED`` sinks which end the run.
    """

    def __init__(self, session: "Session") -> None:
        self._session = session
        self._state = SessionState.UNKNOWN
        self.history: List[SessionState] = []
        self.reason: Optional[str] = None
        self._shutting_down = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def exit_code(self) -> int:
        return 1 if self._state.is_error else 0

    def transition(self, new_state: SessionState) -> None:
        previous = self._state
        self._record(new_state)
        LOG.info("Session state %s -> %s", previous.name, new_state.name)
        if new_state.is_error or new_state is SessionState.SERVER_CLOSED:
            self.shutdown(f"Session entered {new_state.name}")

    def shutdown(self, message: Optional[str] = None, terminal_state: Optional[SessionState] = None) -> None:
        """
        Tear the session down.

        Idempotent and re-entrant: the first call records ``terminal_state``
        and ``message``, starts a graceful close of the relay connection and
        stops the loop.  The close completion calls back in here with the
        connection already cleared, which is then a no-op.
        """

        if self._shutting_down:
            if message:
                LOG.debug("Shutdown already in progress; ignoring '%s'", message)
            self._release_transport()
            return
        self._shutting_down = True

        if terminal_state is not None:
            self._record(terminal_state)
        self.reason = message
        if message:
            level = logging.ERROR if self._state.is_error else logging.INFO
            LOG.log(level, "%s", message)

        self._release_transport()
        self._session.stopped.set()

    def require_state(self, predicate: Callable[[SessionState], bool], message: str) -> None:
        """
        Guard an operation on the current state.

        A failed guard is a protocol error: the session is shut down and
        :class:`AppStateViolation` is raised to abort the caller.
        """

        if predicate(self._state):
            return
        self.shutdown(message, SessionState.ERROR)
        raise AppStateViolation(message)

    def require_at_least(self, minimum: SessionState, message: str) -> None:
        self.require_state(lambda state: state >= minimum, message)

    # ------------------------------------------------------------------ helpers

    def _record(self, new_state: SessionState) -> None:
        self._state = new_state
        self.history.append(new_state)

    def _release_transport(self) -> None:
        transport = self._session.transport
        if transport is None:
            return
        self._session.transport = None
        if transport.is_open:
            self._session.close_transport(transport)


class Session:
    """Owned context shared by every component of one peer run."""

    def __init__(self, config: "SessionConfig", *, loop: asyncio.AbstractEventLoop) -> None:
        self.config = config
        self.loop = loop
        self.transport: Optional["SignalingTransport"] = None
        self.tasks = DeferredTasks(loop)
        self.states = SessionStateMachine(self)
        self.stopped = asyncio.Event()
        self._background: Set[asyncio.Task] = set()
        self._closing: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self.states.state

    def send(self, text: str) -> None:
        transport = self.transport
        if transport is None or not transport.is_open:
            LOG.debug("Signaling connection is gone; dropping frame %.60s", text)
            return
        transport.send_text(text)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> asyncio.Task:
        task = self.loop.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def close_transport(self, transport: "SignalingTransport") -> None:
        async def _close() -> None:
            try:
                await transport.close()
            except Exception:  # pragma: no cover - defensive
                LOG.debug("Error while closing signaling connection", exc_info=True)
            finally:
                self.states.shutdown()

        self._closing = self.loop.create_task(_close(), name="close-signaling")

    async def wait_closed(self) -> None:
        await self.stopped.wait()
        self.tasks.clear()
        pending = [task for task in self._background if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._closing is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._closing

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, AppStateViolation):
            LOG.debug("Task %s stopped by state violation: %s", task.get_name(), exc)
            return
        LOG.error("Task %s failed", task.get_name(), exc_info=exc)


__all__ = [
    "DeferredTask",
    "DeferredTasks",
    "Session",
    "SessionState",
    "SessionStateMachine",
    "classify_server_error",
]
