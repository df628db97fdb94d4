"""
Wire codec for the signaling relay protocol.

Two families of frames travel over the relay connection:

* plaintext control lines (``HELLO``, ``SESSION <id>``, ``SESSION_OK``,
  ``OFFER_REQUEST`` and anything starting with ``ERROR``);
* JSON envelopes carrying either a session description
  (``{"sdp": {"type": ..., "sdp": ...}}``) or a trickled ICE candidate
  (``{"ice": {"candidate": ..., "sdpMLineIndex": ...}}``).

The JSON shapes are pydantic models so that decoding validates the payload in
one step and encoding always emits the aliases the browser expects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedMessage

MAX_MLINE_INDEX = 0xFFFFFFFF


class SdpKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"


class SignalingDescription(BaseModel):
    """An offer or answer together with its SDP text."""

    kind: SdpKind = Field(alias="type")
    sdp: str

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def offer(cls, sdp: str) -> "SignalingDescription":
        return cls(kind=SdpKind.OFFER, sdp=sdp)

    @classmethod
    def answer(cls, sdp: str) -> "SignalingDescription":
        return cls(kind=SdpKind.ANSWER, sdp=sdp)


class IceCandidate(BaseModel):
    sdp_mline_index: int = Field(alias="sdpMLineIndex", ge=0, le=MAX_MLINE_INDEX)
    candidate: str

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class SdpMessage(BaseModel):
    sdp: SignalingDescription


class IceMessage(BaseModel):
    ice: IceCandidate


class ServerCommand(str, Enum):
    """Plaintext commands pushed by the relay server."""

    HELLO = "HELLO"
    SESSION_OK = "SESSION_OK"
    OFFER_REQUEST = "OFFER_REQUEST"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ServerControl:
    command: ServerCommand
    text: str


ServerMessage = Union[ServerControl, SignalingDescription, IceCandidate]

_EXACT_COMMANDS = {
    ServerCommand.HELLO.value: ServerCommand.HELLO,
    ServerCommand.SESSION_OK.value: ServerCommand.SESSION_OK,
    ServerCommand.OFFER_REQUEST.value: ServerCommand.OFFER_REQUEST,
}


def encode_hello(identity: Union[str, int]) -> str:
    return f"HELLO {identity}"


def encode_session(peer_id: str) -> str:
    return f"SESSION {peer_id}"


def encode_description(description: SignalingDescription) -> str:
    return SdpMessage(sdp=description).model_dump_json(by_alias=True)


def encode_candidate(candidate: IceCandidate) -> str:
    return IceMessage(ice=candidate).model_dump_json(by_alias=True)


def decode_server_message(text: str) -> ServerMessage:
    """
    Classify a text frame received from the relay.

    Raises :class:`MalformedMessage` for anything that is neither a known
    control line nor a valid ``sdp``/``ice`` envelope.
    """

    command = _EXACT_COMMANDS.get(text)
    if command is not None:
        return ServerControl(command=command, text=text)
    if text.startswith(ServerCommand.ERROR.value):
        return ServerControl(command=ServerCommand.ERROR, text=text)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedMessage(f"Unknown message {text!r}") from exc
    if not isinstance(payload, dict):
        raise MalformedMessage(f"Unknown JSON message {text!r}")

    try:
        if "sdp" in payload:
            return SdpMessage.model_validate(payload).sdp
        if "ice" in payload:
            return IceMessage.model_validate(payload).ice
    except ValidationError as exc:
        raise MalformedMessage(f"Invalid signaling payload: {exc}") from exc
    raise MalformedMessage(f"Unknown JSON message {text!r}")


__all__ = [
    "IceCandidate",
    "IceMessage",
    "SdpKind",
    "SdpMessage",
    "ServerCommand",
    "ServerControl",
    "ServerMessage",
    "SignalingDescription",
    "decode_server_message",
    "encode_candidate",
    "encode_description",
    "encode_hello",
    "encode_session",
]
