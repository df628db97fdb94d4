"""
Peer configuration.

The configuration can be assembled from CLI flags, from a YAML profile, or
both; flags override the profile.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit

import yaml

from .errors import ConfigurationError

DEFAULT_SERVER_URL = "wss://127.0.0.1:8443"
DEFAULT_STUN_SERVER = "stun://stun.l.google.com:19302"
LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1"})


@dataclass(frozen=True)
class PeerIdentity:
    """
    Who we are on the relay and who we talk to.

    With ``peer_id`` we place the call (``SESSION <peer_id>``); with
    ``our_id`` we register under that name and wait to be called.
    """

    peer_id: Optional[str] = None
    our_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.peer_id and not self.our_id:
            raise ConfigurationError("--peer-id or --our-id is a required argument")
        if self.peer_id and self.our_id:
            raise ConfigurationError("specify only --peer-id or --our-id")

    @property
    def initiates(self) -> bool:
        return bool(self.peer_id)


@dataclass(frozen=True)
class SessionConfig:
    identity: PeerIdentity
    server_url: str = DEFAULT_SERVER_URL
    disable_tls_verification: bool = False
    stun_server: Optional[str] = DEFAULT_STUN_SERVER
    ping_interval: float = 2.0
    stats_interval: float = 0.1
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        parts = urlsplit(self.server_url)
        if parts.scheme not in {"ws", "wss"} or not parts.hostname:
            raise ConfigurationError(f"Invalid signaling server URL '{self.server_url}'")
        if self.ping_interval <= 0:
            raise ConfigurationError("ping_interval must be positive")

    @property
    def server_host(self) -> str:
        return urlsplit(self.server_url).hostname or ""

    @property
    def uses_tls(self) -> bool:
        return urlsplit(self.server_url).scheme == "wss"

    @property
    def verify_tls(self) -> bool:
        """
        Whether the server certificate is checked.

        A relay on localhost is assumed to be a test server with a
        self-signed certificate.
        """

        if self.disable_tls_verification:
            return False
        return self.server_host not in LOCAL_HOSTS


_CONFIG_KEYS = {f.name for f in fields(SessionConfig)} - {"identity", "extra"}


def config_from_mapping(data: Dict[str, Any]) -> SessionConfig:
    """
    Build a :class:`SessionConfig` from a flat mapping such as a YAML profile.

    Unknown keys are preserved in ``extra`` rather than rejected.
    """

    values = dict(data or {})
    identity = PeerIdentity(
        peer_id=_optional_str(values.pop("peer_id", None)),
        our_id=_optional_str(values.pop("our_id", None)),
    )
    known = {key: values.pop(key) for key in list(values) if key in _CONFIG_KEYS}
    return SessionConfig(identity=identity, extra=values, **known)


def load_config(path: Union[str, Path], **overrides: Any) -> SessionConfig:
    """
    Read a YAML profile and apply ``overrides`` (``None`` values are ignored).
    """

    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file '{path}' not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping")

    data.update({key: value for key, value in overrides.items() if value is not None})
    return config_from_mapping(data)


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "DEFAULT_SERVER_URL",
    "DEFAULT_STUN_SERVER",
    "PeerIdentity",
    "SessionConfig",
    "config_from_mapping",
    "load_config",
]
