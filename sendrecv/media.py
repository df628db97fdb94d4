"""
Outbound media branches.

A branch is a self-contained source → encoder → payloader bin bound to one
send endpoint (request pad / transceiver) of the peer connection.  At most one
branch per media kind is attached at any time.  The structural work is done by
the :class:`~sendrecv.connection.MediaBackend`; this module owns the ordering
and the per-kind lifecycle.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional, TYPE_CHECKING

from .connection import MediaBackend, TransceiverDirection
from .errors import MediaError

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .session import Session

LOG = logging.getLogger(__name__)


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class MediaSource(str, Enum):
    TEST_PATTERN = "test-pattern"
    LOOPBACK = "loopback"
    TONE = "tone"


class BranchState(str, Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"


SOURCES_BY_KIND = {
    MediaKind.VIDEO: frozenset({MediaSource.TEST_PATTERN, MediaSource.LOOPBACK}),
    MediaKind.AUDIO: frozenset({MediaSource.TONE}),
}

_branch_ids = itertools.count(1)


@dataclass(eq=False)
class MediaBranch:
    kind: MediaKind
    source: MediaSource
    pipeline_handle: Any = None
    sink_handle: Any = None
    id: int = field(default_factory=lambda: next(_branch_ids))

    @property
    def label(self) -> str:
        return f"{self.kind.value}/{self.source.value}#{self.id}"


class MediaAttachmentManager:
    """Attach and detach outbound branches against a media backend."""

    def __init__(self, session: "Session", backend: MediaBackend) -> None:
        self._session = session
        self._backend = backend
        self._states: Dict[MediaKind, BranchState] = {kind: BranchState.DETACHED for kind in MediaKind}
        self._branches: Dict[MediaKind, MediaBranch] = {}

    def state(self, kind: MediaKind) -> BranchState:
        return self._states[MediaKind(kind)]

    def branch(self, kind: MediaKind) -> Optional[MediaBranch]:
        return self._branches.get(MediaKind(kind))

    def start(self, kind: MediaKind, source: MediaSource) -> Optional[MediaBranch]:
        """
        Attach a new branch for ``kind``.

        Returns the attached branch, or ``None`` when a branch of that kind is
        already attached or attaching, in which case the request is ignored.
        """

        kind = MediaKind(kind)
        source = MediaSource(source)
        if source not in SOURCES_BY_KIND[kind]:
            raise ValueError(f"{source.value} is not a {kind.value} source")

        current = self._states[kind]
        if current in (BranchState.ATTACHED, BranchState.ATTACHING):
            LOG.info("Ignoring start of %s %s; a %s branch is already %s", kind.value, source.value, kind.value, current.value)
            return None
        if current is BranchState.DETACHING:
            LOG.warning("Ignoring start of %s %s while the previous branch is detaching", kind.value, source.value)
            return None

        branch = MediaBranch(kind=kind, source=source)
        self._states[kind] = BranchState.ATTACHING
        LOG.info("Sending %s to browser (%s)", kind.value, branch.label)
        try:
            self._attach(branch)
        except Exception as exc:
            self._rollback(branch)
            self._states[kind] = BranchState.DETACHED
            if isinstance(exc, MediaError):
                raise
            raise MediaError(f"Failed to attach {branch.label}: {exc}") from exc

        self._branches[kind] = branch
        self._states[kind] = BranchState.ATTACHED
        return branch

    def stop(self, kind: MediaKind) -> None:
        """
        Detach the branch for ``kind``; a no-op when nothing is attached.

        The transceiver is demoted rather than removed so the m-line keeps its
        index for later renegotiation.
        """

        kind = MediaKind(kind)
        if self._states[kind] is not BranchState.ATTACHED:
            LOG.debug("Stop of %s ignored; branch is %s", kind.value, self._states[kind].value)
            return

        branch = self._branches.pop(kind)
        self._states[kind] = BranchState.DETACHING
        LOG.info("Stopping %s to browser (%s)", kind.value, branch.label)
        backend = self._backend
        try:
            backend.send_eos(branch.pipeline_handle)
            current = backend.get_direction(branch.sink_handle)
            demoted = (
                TransceiverDirection.RECVONLY
                if current is TransceiverDirection.SENDRECV
                else TransceiverDirection.INACTIVE
            )
            backend.set_direction(branch.sink_handle, demoted)
            backend.set_locked_state(branch.pipeline_handle, True)
            backend.set_null_state(branch.pipeline_handle)
            backend.unlink(branch.pipeline_handle, branch.sink_handle)
            backend.release_sink(branch.sink_handle)
            backend.remove_branch(branch.pipeline_handle)
        finally:
            branch.sink_handle = None
            branch.pipeline_handle = None
            self._states[kind] = BranchState.DETACHED

    def stop_all(self) -> None:
        for kind in MediaKind:
            try:
                self.stop(kind)
            except Exception:
                LOG.exception("Failed to stop %s branch during shutdown", kind.value)

    # ------------------------------------------------------------------ helpers

    def _attach(self, branch: MediaBranch) -> None:
        backend = self._backend
        branch.pipeline_handle = backend.build_branch(branch.kind.value, branch.source.value)
        with self._locked(branch.pipeline_handle):
            backend.add_branch(branch.pipeline_handle)
            branch.sink_handle = backend.request_sink(branch.kind.value)
            backend.link(branch.pipeline_handle, branch.sink_handle)
        backend.sync_state_with_parent(branch.pipeline_handle)

    @contextlib.contextmanager
    def _locked(self, element: Any) -> Iterator[None]:
        self._backend.set_locked_state(element, True)
        try:
            yield
        finally:
            self._backend.set_locked_state(element, False)

    def _rollback(self, branch: MediaBranch) -> None:
        backend = self._backend
        if branch.sink_handle is not None:
            with contextlib.suppress(Exception):
                backend.release_sink(branch.sink_handle)
        if branch.pipeline_handle is not None:
            with contextlib.suppress(Exception):
                backend.set_null_state(branch.pipeline_handle)
            with contextlib.suppress(Exception):
                backend.remove_branch(branch.pipeline_handle)
        branch.sink_handle = None
        branch.pipeline_handle = None


__all__ = [
    "BranchState",
    "MediaAttachmentManager",
    "MediaBranch",
    "MediaKind",
    "MediaSource",
    "SOURCES_BY_KIND",
]
