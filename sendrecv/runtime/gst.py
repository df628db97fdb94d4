"""
GStreamer bindings, initialisation and the GLib main loop thread.

Importing this module never fails: when PyGObject or the GStreamer typelibs
are missing the binding names are ``None`` and :func:`ensure_initialised`
raises :class:`~sendrecv.errors.CollaboratorUnavailable` instead.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from ..errors import CollaboratorUnavailable

LOG = logging.getLogger(__name__)

REQUIRED_PLUGINS = (
    "opus",
    "vpx",
    "nice",
    "webrtc",
    "dtls",
    "srtp",
    "rtpmanager",
    "videotestsrc",
    "audiotestsrc",
)

_GST_INITIALISED = False
_INIT_LOCK = threading.Lock()

try:  # pragma: no cover - availability depends on host environment
    import gi  # type: ignore

    gi.require_version("Gst", "1.0")
    gi.require_version("GstSdp", "1.0")
    gi.require_version("GstWebRTC", "1.0")
    from gi.repository import GLib, Gst, GstSdp, GstWebRTC  # type: ignore
except (ImportError, ValueError) as exc:  # pragma: no cover
    GLib = Gst = GstSdp = GstWebRTC = None  # type: ignore[assignment]
    _GST_IMPORT_ERROR: Optional[BaseException] = exc
else:  # pragma: no cover - executed only when GStreamer is present
    _GST_IMPORT_ERROR = None


def is_available() -> bool:
    return Gst is not None


def ensure_initialised() -> None:
    global _GST_INITIALISED
    if Gst is None:
        raise CollaboratorUnavailable(f"GStreamer runtime unavailable: {_GST_IMPORT_ERROR}")
    with _INIT_LOCK:
        if _GST_INITIALISED:
            return
        Gst.init(None)
        _GST_INITIALISED = True


def check_plugins(required=REQUIRED_PLUGINS) -> List[str]:
    """Return the names of required plugins missing from the registry."""

    ensure_initialised()
    registry = Gst.Registry.get()
    missing = []
    for name in required:
        if registry.find_plugin(name) is None:
            LOG.error("Required gstreamer plugin '%s' not found", name)
            missing.append(name)
    return missing


class GLibLoopThread:
    """
    Run a GLib main loop on a daemon thread.

    Bus watches and GLib timeouts need a running main loop; asyncio owns the
    main thread, so the GLib loop lives beside it.
    """

    def __init__(self, name: str = "glib-main-loop") -> None:
        self._name = name
        self._loop = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        ensure_initialised()
        self._loop = GLib.MainLoop()
        self._thread = threading.Thread(target=self._loop.run, name=self._name, daemon=True)
        self._thread.start()
        LOG.debug("GLib main loop started in background thread")

    def stop(self, timeout: float = 1.0) -> None:
        loop, thread = self._loop, self._thread
        self._loop = None
        self._thread = None
        if loop is not None:
            loop.quit()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)


__all__ = [
    "GLib",
    "GLibLoopThread",
    "Gst",
    "GstSdp",
    "GstWebRTC",
    "REQUIRED_PLUGINS",
    "check_plugins",
    "ensure_initialised",
    "is_available",
]
