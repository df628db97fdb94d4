"""
``webrtcbin`` implementation of the peer connection and media backend.

GStreamer emits its signals on streaming threads.  Handlers here do no
protocol work: they translate each signal into a :mod:`sendrecv.events` value
and post it to the session's :class:`~sendrecv.events.EventQueue`.  Promise
replies are likewise marshalled back onto the asyncio loop before the
corresponding future is resolved.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from ..config import SessionConfig
from ..connection import (
    ChannelRole,
    DataChannel,
    MediaBackend,
    PeerConnection,
    SignalingState,
    TransceiverDirection,
)
from ..errors import MediaError, SdpParseError
from ..events import (
    DataChannelAnnounced,
    DataChannelClosed,
    DataChannelErrored,
    DataChannelMessage,
    DataChannelOpened,
    EventQueue,
    LocalIceCandidate,
    NegotiationNeeded,
    PipelineFailed,
)
from ..wire import SdpKind, SignalingDescription
from . import branches
from .gst import GLib, GLibLoopThread, Gst, GstSdp, GstWebRTC, ensure_initialised

LOG = logging.getLogger(__name__)

SEND_CHANNEL_LABEL = "channel"


class GstDataChannel(DataChannel):
    """Wrap a ``GstWebRTCDataChannel`` and forward its signals as events."""

    def __init__(self, channel: Any, events: EventQueue) -> None:
        self._channel = channel
        self._events = events
        self._handlers = [
            channel.connect("on-open", self._on_open),
            channel.connect("on-close", self._on_close),
            channel.connect("on-error", self._on_error),
            channel.connect("on-message-string", self._on_message_string),
        ]

    @property
    def label(self) -> str:
        return self._channel.get_property("label")

    def send_string(self, text: str) -> None:
        self._channel.emit("send-string", text)

    def send_data(self, data: bytes) -> None:
        self._channel.emit("send-data", GLib.Bytes.new(data))

    def close(self) -> None:
        self._channel.emit("close")

    def disconnect(self) -> None:
        for handler in self._handlers:
            try:
                self._channel.disconnect(handler)
            except Exception:  # pragma: no cover - defensive
                LOG.debug("Failed to disconnect data channel handler", exc_info=True)
        self._handlers = []

    # ------------------------------------------------------------------ helpers

    def _on_open(self, _channel) -> None:
        self._events.post(DataChannelOpened(self))

    def _on_close(self, _channel) -> None:
        self._events.post(DataChannelClosed(self))

    def _on_error(self, _channel, error=None) -> None:
        message = getattr(error, "message", None) if error is not None else None
        self._events.post(DataChannelErrored(self, message))

    def _on_message_string(self, _channel, text: str) -> None:
        self._events.post(DataChannelMessage(self, text))


class GstPeerConnection(PeerConnection, MediaBackend):
    """
    One ``pipeline`` holding a ``webrtcbin`` named ``sendrecv``.

    The connection is receive-only at start: a data channel and a receive-only
    H.264 video transceiver.  Outbound media is attached later through the
    :class:`~sendrecv.connection.MediaBackend` methods.
    """

    def __init__(
        self,
        config: SessionConfig,
        events: EventQueue,
        *,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._config = config
        self._events = events
        self._loop = loop
        self._pipeline = None
        self._webrtc = None
        self._glib = GLibLoopThread()
        self._channels: list[GstDataChannel] = []
        self._stats_source: Optional[int] = None
        self._lock = threading.RLock()

    @property
    def webrtcbin(self):
        return self._webrtc

    # ------------------------------------------------------------------ PeerConnection

    def start(self) -> None:
        ensure_initialised()
        with self._lock:
            if self._pipeline is not None:
                return
            pipeline = Gst.Pipeline.new("pipeline")
            webrtc = Gst.ElementFactory.make("webrtcbin", "sendrecv")
            if pipeline is None or webrtc is None:
                raise MediaError("Failed to create webrtcbin; is the webrtc plugin installed?")

            webrtc.set_property("bundle-policy", GstWebRTC.WebRTCBundlePolicy.MAX_BUNDLE)
            if self._config.stun_server:
                webrtc.set_property("stun-server", self._config.stun_server)
            pipeline.add(webrtc)

            webrtc.connect("on-negotiation-needed", self._on_negotiation_needed)
            webrtc.connect("on-ice-candidate", self._on_ice_candidate)
            webrtc.connect("notify::ice-gathering-state", self._on_ice_gathering_state)
            webrtc.connect("on-data-channel", self._on_data_channel)
            webrtc.connect("pad-added", self._on_incoming_stream)

            bus = pipeline.get_bus()
            bus.add_signal_watch()
            bus.connect("message", self._on_bus_message)

            self._pipeline = pipeline
            self._webrtc = webrtc

            pipeline.set_state(Gst.State.READY)
            self._create_send_channel()
            self._add_receive_transceiver()

            self._glib.start()
            if LOG.isEnabledFor(logging.DEBUG):
                self._schedule_stats()

            LOG.info("Setting pipeline to PLAYING")
            if pipeline.set_state(Gst.State.PLAYING) == Gst.StateChangeReturn.FAILURE:
                self._teardown_locked()
                raise MediaError("Failed to set the pipeline to PLAYING")

    def stop(self) -> None:
        with self._lock:
            self._teardown_locked()

    @property
    def signaling_state(self) -> SignalingState:
        if self._webrtc is None:
            return SignalingState.CLOSED
        state = self._webrtc.get_property("signaling-state")
        return SignalingState(state.value_nick)

    def create_offer(self) -> "asyncio.Future[SignalingDescription]":
        return self._request("create-offer", lambda reply: self._reply_description(reply, SdpKind.OFFER))

    def create_answer(self) -> "asyncio.Future[SignalingDescription]":
        return self._request("create-answer", lambda reply: self._reply_description(reply, SdpKind.ANSWER))

    def set_local_description(self, description: SignalingDescription) -> "asyncio.Future[None]":
        return self._apply_description("set-local-description", description)

    def set_remote_description(self, description: SignalingDescription) -> "asyncio.Future[None]":
        return self._apply_description("set-remote-description", description)

    def add_ice_candidate(self, mline_index: int, candidate: str) -> None:
        if self._webrtc is None:
            LOG.warning("Dropping remote candidate; pipeline is not running")
            return
        self._webrtc.emit("add-ice-candidate", mline_index, candidate)

    # ------------------------------------------------------------------ MediaBackend

    def build_branch(self, kind: str, source: str) -> Any:
        description = branches.branch_description(kind, source)
        try:
            bin_ = Gst.parse_bin_from_description(description, True)
        except GLib.Error as exc:
            raise MediaError(f"Failed to build {kind}/{source} branch: {exc.message}") from exc
        bin_.set_name(branches.branch_name(kind))
        return bin_

    def add_branch(self, element: Any) -> None:
        if not self._pipeline.add(element):
            raise MediaError(f"Failed to add {element.get_name()} to the pipeline")

    def set_locked_state(self, element: Any, locked: bool) -> None:
        element.set_locked_state(locked)

    def request_sink(self, kind: str) -> Any:
        sink = self._webrtc.request_pad_simple("sink_%u")
        if sink is None:
            raise MediaError(f"webrtcbin refused a {kind} sink pad")
        LOG.info("New %s sink named %s", kind, sink.get_name())
        return sink

    def link(self, element: Any, sink: Any) -> None:
        src = element.get_static_pad("src")
        result = src.link(sink)
        if result != Gst.PadLinkReturn.OK:
            raise MediaError(f"Failed to link {element.get_name()} to {sink.get_name()}: {result.value_nick}")

    def sync_state_with_parent(self, element: Any) -> None:
        element.sync_state_with_parent()

    def send_eos(self, element: Any) -> None:
        element.send_event(Gst.Event.new_eos())

    def get_direction(self, sink: Any) -> TransceiverDirection:
        transceiver = sink.get_property("transceiver")
        return TransceiverDirection(transceiver.get_property("direction").value_nick)

    def set_direction(self, sink: Any, direction: TransceiverDirection) -> None:
        transceiver = sink.get_property("transceiver")
        value = getattr(GstWebRTC.WebRTCRTPTransceiverDirection, direction.name)
        transceiver.set_property("direction", value)

    def set_null_state(self, element: Any) -> None:
        element.set_state(Gst.State.NULL)

    def unlink(self, element: Any, sink: Any) -> None:
        src = element.get_static_pad("src")
        if src is not None:
            src.unlink(sink)

    def release_sink(self, sink: Any) -> None:
        self._webrtc.release_request_pad(sink)

    def remove_branch(self, element: Any) -> None:
        self._pipeline.remove(element)

    # ------------------------------------------------------------------ setup helpers

    def _create_send_channel(self) -> None:
        channel = self._webrtc.emit("create-data-channel", SEND_CHANNEL_LABEL, None)
        if channel is None:
            LOG.warning("Could not create data channel, is usrsctp available?")
            return
        LOG.info("Created data channel")
        wrapper = GstDataChannel(channel, self._events)
        self._channels.append(wrapper)
        self._events.post(DataChannelAnnounced(wrapper, ChannelRole.SEND))

    def _add_receive_transceiver(self) -> None:
        caps = Gst.Caps.from_string(branches.RECV_VIDEO_CAPS)
        self._webrtc.emit(
            "add-transceiver",
            GstWebRTC.WebRTCRTPTransceiverDirection.RECVONLY,
            caps,
        )

    def _teardown_locked(self) -> None:
        if self._stats_source is not None:
            GLib.source_remove(self._stats_source)
            self._stats_source = None
        for channel in self._channels:
            channel.disconnect()
        self._channels = []
        pipeline = self._pipeline
        self._pipeline = None
        self._webrtc = None
        if pipeline is not None:
            pipeline.set_state(Gst.State.NULL)
            bus = pipeline.get_bus()
            if bus is not None:
                bus.remove_signal_watch()
            LOG.info("Pipeline stopped")
        self._glib.stop()

    # ------------------------------------------------------------------ promises

    def _request(self, signal: str, extract: Callable[[Any], Any]) -> asyncio.Future:
        future = self._loop.create_future()
        if self._webrtc is None:
            future.set_exception(MediaError(f"Cannot {signal}; pipeline is not running"))
            return future

        def _on_reply(promise, *_args) -> None:
            try:
                result = promise.wait()
                if result != Gst.PromiseResult.REPLIED:
                    raise MediaError(f"{signal} did not complete ({result.value_nick})")
                value = extract(promise.get_reply())
            except Exception as exc:
                self._resolve(future, exception=exc)
            else:
                self._resolve(future, result=value)

        promise = Gst.Promise.new_with_change_func(_on_reply, None)
        self._webrtc.emit(signal, None, promise)
        return future

    def _apply_description(self, signal: str, description: SignalingDescription) -> asyncio.Future:
        future = self._loop.create_future()
        try:
            gst_description = _to_gst_description(description)
        except SdpParseError as exc:
            future.set_exception(exc)
            return future
        if self._webrtc is None:
            future.set_exception(MediaError(f"Cannot {signal}; pipeline is not running"))
            return future

        def _on_reply(promise, *_args) -> None:
            promise.wait()
            reply = promise.get_reply()
            error = _reply_error(reply)
            if error is not None:
                self._resolve(future, exception=MediaError(f"{signal} failed: {error}"))
            else:
                self._resolve(future, result=None)

        promise = Gst.Promise.new_with_change_func(_on_reply, None)
        self._webrtc.emit(signal, gst_description, promise)
        return future

    def _resolve(self, future: asyncio.Future, *, result: Any = None, exception: Optional[BaseException] = None) -> None:
        def _set() -> None:
            if future.done():
                return
            if exception is not None:
                future.set_exception(exception)
            else:
                future.set_result(result)

        try:
            self._loop.call_soon_threadsafe(_set)
        except RuntimeError:
            LOG.debug("Event loop closed; dropping promise reply")

    @staticmethod
    def _reply_description(reply, kind: SdpKind) -> SignalingDescription:
        error = _reply_error(reply)
        if error is not None:
            raise MediaError(f"Failed to create {kind.value}: {error}")
        gst_description = reply.get_value(kind.value)
        return SignalingDescription(kind=kind, sdp=gst_description.sdp.as_text())

    # ------------------------------------------------------------------ signal handlers

    def _on_negotiation_needed(self, _element) -> None:
        self._events.post(NegotiationNeeded())

    def _on_ice_candidate(self, _element, mline_index: int, candidate: str) -> None:
        self._events.post(LocalIceCandidate(mline_index, candidate))

    def _on_ice_gathering_state(self, element, _pspec) -> None:
        state = element.get_property("ice-gathering-state")
        LOG.info("ICE gathering state changed to %s", state.value_nick)

    def _on_data_channel(self, _element, channel) -> None:
        LOG.info("Remote peer created data channel")
        wrapper = GstDataChannel(channel, self._events)
        self._channels.append(wrapper)
        self._events.post(DataChannelAnnounced(wrapper, ChannelRole.RECEIVE))

    def _on_incoming_stream(self, _element, pad) -> None:
        if pad.get_direction() != Gst.PadDirection.SRC:
            return
        pipeline = self._pipeline
        if pipeline is None:
            return
        LOG.info("Incoming stream on %s", pad.get_name())
        decodebin = Gst.ElementFactory.make("decodebin", None)
        decodebin.connect("pad-added", self._on_incoming_decoded)
        pipeline.add(decodebin)
        decodebin.sync_state_with_parent()
        pad.link(decodebin.get_static_pad("sink"))

    def _on_incoming_decoded(self, _decodebin, pad) -> None:
        caps = pad.get_current_caps()
        if caps is None:
            LOG.warning("Pad '%s' has no caps, ignoring", pad.get_name())
            return
        name = caps.get_structure(0).get_name()
        try:
            description = branches.incoming_description(name)
        except ValueError:
            LOG.warning("Unknown pad %s (%s), ignoring", pad.get_name(), name)
            return
        LOG.info("Handling incoming %s stream", name)
        try:
            playback = Gst.parse_bin_from_description(description, True)
        except GLib.Error as exc:
            self._events.post(PipelineFailed(f"Cannot play incoming {name}: {exc.message}"))
            return
        self._pipeline.add(playback)
        playback.sync_state_with_parent()
        if pad.link(playback.get_static_pad("sink")) != Gst.PadLinkReturn.OK:
            self._events.post(PipelineFailed(f"Failed to link incoming {name} stream"))

    def _on_bus_message(self, _bus, message) -> None:
        if message.type == Gst.MessageType.ERROR:
            error, debug = message.parse_error()
            LOG.debug("Pipeline error details: %s", debug)
            self._events.post(PipelineFailed(f"{message.src.get_name()}: {error.message}"))
        elif message.type == Gst.MessageType.WARNING:
            warning, debug = message.parse_warning()
            LOG.warning("Pipeline warning from %s: %s", message.src.get_name(), warning.message)

    # ------------------------------------------------------------------ stats

    def _schedule_stats(self) -> None:
        interval_ms = max(int(self._config.stats_interval * 1000), 1)
        self._stats_source = GLib.timeout_add(interval_ms, self._request_stats)

    def _request_stats(self) -> bool:
        self._stats_source = None
        webrtc = self._webrtc
        if webrtc is None:
            return False
        promise = Gst.Promise.new_with_change_func(self._on_stats, None)
        webrtc.emit("get-stats", None, promise)
        return False

    def _on_stats(self, promise, *_args) -> None:
        if promise.wait() != Gst.PromiseResult.REPLIED:
            return
        stats = promise.get_reply()
        for index in range(stats.n_fields()):
            name = stats.nth_field_name(index)
            LOG.debug("stat: '%s': %s", name, stats.get_value(name))
        with self._lock:
            if self._webrtc is not None:
                self._schedule_stats()


def _to_gst_description(description: SignalingDescription):
    result, message = GstSdp.SDPMessage.new_from_text(description.sdp)
    if result != GstSdp.SDPResult.OK:
        raise SdpParseError(f"Could not parse {description.kind.value} SDP ({result.value_nick})")
    sdp_type = (
        GstWebRTC.WebRTCSDPType.OFFER if description.kind is SdpKind.OFFER else GstWebRTC.WebRTCSDPType.ANSWER
    )
    return GstWebRTC.WebRTCSessionDescription.new(sdp_type, message)


def _reply_error(reply) -> Optional[str]:
    if reply is None or not reply.has_field("error"):
        return None
    error = reply.get_value("error")
    return getattr(error, "message", str(error))


__all__ = ["GstDataChannel", "GstPeerConnection", "SEND_CHANNEL_LABEL"]
