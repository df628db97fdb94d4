"""
``gst-launch`` descriptions of the bins attached to ``webrtcbin``.

Outbound branches expose a single ``src`` ghost pad carrying RTP, ready to be
linked to a requested ``sink_%u`` pad.  Incoming branches expose a single
``sink`` ghost pad fed by a ``decodebin`` source pad.
"""

from __future__ import annotations

from typing import Dict, Tuple

VIDEO_PAYLOAD_TYPE = 96
AUDIO_PAYLOAD_TYPE = 97

INPUT_CAPS = "video/x-raw,width=640,height=480,framerate=25/1"
VIDEO_H264_CAPS = "video/x-h264,profile=constrained-baseline"
RTP_VIDEO_H264_CAPS = f"application/x-rtp,media=video,encoding-name=H264,payload={VIDEO_PAYLOAD_TYPE}"
RTP_AUDIO_OPUS_CAPS = f"application/x-rtp,media=audio,encoding-name=OPUS,payload={AUDIO_PAYLOAD_TYPE}"
RECV_VIDEO_CAPS = (
    f"application/x-rtp,media=video,encoding-name=H264,payload={VIDEO_PAYLOAD_TYPE},"
    "clock-rate=90000,packetization-mode=(string)1,profile-level-id=(string)42c016"
)

LOOPBACK_CHANNEL = "sendrecv-loopback"

# videotestsrc pattern 18 is "ball"; audiotestsrc wave 10 is red noise.
TEST_PATTERN = 18
TONE_WAVE = 10

_H264_TAIL = (
    f"videoconvert ! {INPUT_CAPS} ! queue max-size-buffers=1 ! "
    "x264enc bitrate=800 speed-preset=ultrafast tune=zerolatency threads=1 ! "
    f"{VIDEO_H264_CAPS} ! queue ! h264parse ! "
    "rtph264pay config-interval=-1 aggregate-mode=zero-latency mtu=1300 ! "
    f"{RTP_VIDEO_H264_CAPS} ! queue"
)

_OUTBOUND: Dict[Tuple[str, str], str] = {
    ("video", "test-pattern"): (
        f"videotestsrc is-live=true pattern={TEST_PATTERN} ! videorate ! videoscale ! {_H264_TAIL}"
    ),
    ("video", "loopback"): (
        f"intervideosrc channel={LOOPBACK_CHANNEL} ! videorate ! videoscale ! {_H264_TAIL}"
    ),
    ("audio", "tone"): (
        f"audiotestsrc is-live=true wave={TONE_WAVE} ! audioconvert ! audioresample ! "
        f"opusenc ! rtpopuspay ! {RTP_AUDIO_OPUS_CAPS} ! queue"
    ),
}

_INCOMING: Dict[str, str] = {
    "video": (
        "queue ! videoconvert ! tee name=remote-video "
        "remote-video. ! queue ! autovideosink "
        f"remote-video. ! queue leaky=downstream ! intervideosink channel={LOOPBACK_CHANNEL}"
    ),
    "audio": "queue ! audioconvert ! audioresample ! autoaudiosink",
}


def branch_description(kind: str, source: str) -> str:
    """Return the bin description for an outbound ``kind``/``source`` branch."""

    try:
        return _OUTBOUND[(kind, source)]
    except KeyError:
        raise ValueError(f"No outbound branch for {kind}/{source}") from None


def branch_name(kind: str) -> str:
    return f"{kind}-to-browser"


def incoming_description(media_type: str) -> str:
    """
    Return the playback bin for a decoded stream whose caps name starts with
    ``video`` or ``audio``.
    """

    for prefix, description in _INCOMING.items():
        if media_type.startswith(prefix):
            return description
    raise ValueError(f"Unknown incoming media type '{media_type}'")


__all__ = [
    "LOOPBACK_CHANNEL",
    "RECV_VIDEO_CAPS",
    "RTP_AUDIO_OPUS_CAPS",
    "RTP_VIDEO_H264_CAPS",
    "branch_description",
    "branch_name",
    "incoming_description",
]
