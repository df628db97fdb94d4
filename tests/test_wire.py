import json

import pytest

from sendrecv.errors import MalformedMessage
from sendrecv.wire import (
    IceCandidate,
    SdpKind,
    ServerCommand,
    ServerControl,
    SignalingDescription,
    decode_server_message,
    encode_candidate,
    encode_description,
    encode_hello,
    encode_session,
)

SAMPLE_SDP = "v=0\r\no=- 4611731400430051336 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\n"
SAMPLE_CANDIDATE = "candidate:1 1 UDP 2015363327 192.168.1.20 51234 typ host"


def test_control_lines_are_plain_text() -> None:
    assert encode_hello(4321) == "HELLO 4321"
    assert encode_hello("browser") == "HELLO browser"
    assert encode_session("browser") == "SESSION browser"


def test_description_wire_shape() -> None:
    encoded = encode_description(SignalingDescription.offer(SAMPLE_SDP))

    assert json.loads(encoded) == {"sdp": {"type": "offer", "sdp": SAMPLE_SDP}}


def test_candidate_wire_shape() -> None:
    encoded = encode_candidate(IceCandidate(sdp_mline_index=1, candidate=SAMPLE_CANDIDATE))

    assert json.loads(encoded) == {"ice": {"sdpMLineIndex": 1, "candidate": SAMPLE_CANDIDATE}}


@pytest.mark.parametrize(
    "description",
    [
        SignalingDescription.offer(SAMPLE_SDP),
        SignalingDescription.answer("a=\"quoted\" \\ {braces} ~"),
        SignalingDescription.answer(""),
    ],
)
def test_description_round_trip(description: SignalingDescription) -> None:
    assert decode_server_message(encode_description(description)) == description


@pytest.mark.parametrize("mline_index", [0, 7, 0xFFFFFFFF])
def test_candidate_round_trip(mline_index: int) -> None:
    candidate = IceCandidate(sdp_mline_index=mline_index, candidate=SAMPLE_CANDIDATE)

    assert decode_server_message(encode_candidate(candidate)) == candidate


@pytest.mark.parametrize(
    ("text", "command"),
    [
        ("HELLO", ServerCommand.HELLO),
        ("SESSION_OK", ServerCommand.SESSION_OK),
        ("OFFER_REQUEST", ServerCommand.OFFER_REQUEST),
        ("ERROR peer 'browser' not found", ServerCommand.ERROR),
        ("ERROR", ServerCommand.ERROR),
    ],
)
def test_decode_control_lines(text: str, command: ServerCommand) -> None:
    assert decode_server_message(text) == ServerControl(command=command, text=text)


def test_decode_answer_from_browser() -> None:
    message = decode_server_message('{"sdp": {"type": "answer", "sdp": "v=0"}}')

    assert isinstance(message, SignalingDescription)
    assert message.kind is SdpKind.ANSWER
    assert message.sdp == "v=0"


@pytest.mark.parametrize(
    "text",
    [
        "HELLO 1234",
        "not json at all",
        "[1, 2, 3]",
        '{"other": {}}',
        '{"sdp": {"sdp": "v=0"}}',
        '{"sdp": {"type": "pranswer", "sdp": "v=0"}}',
        '{"ice": {"candidate": "c", "sdpMLineIndex": -1}}',
        '{"ice": {"candidate": "c", "sdpMLineIndex": 4294967296}}',
        '{"ice": {"sdpMLineIndex": 0}}',
    ],
)
def test_decode_rejects_malformed_payloads(text: str) -> None:
    with pytest.raises(MalformedMessage):
        decode_server_message(text)


def test_malformed_message_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        decode_server_message("{")


def test_models_are_immutable() -> None:
    description = SignalingDescription.offer(SAMPLE_SDP)

    with pytest.raises(Exception):
        description.sdp = "v=1"  # type: ignore[misc]
