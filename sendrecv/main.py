"""
Peer process entrypoint: ``python -m sendrecv`` or ``sendrecv``.

Resolves the configuration, initialises logging, checks the GStreamer
plugins and runs one session.  The process exit status is non-zero when the
session ended on an error path.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .client import SendRecvClient
from .config import DEFAULT_SERVER_URL, PeerIdentity, SessionConfig, load_config
from .errors import CollaboratorUnavailable, ConfigurationError
from .events import EventQueue
from .session import Session
from .utils.logging import configure_logging, parse_level

LOG = logging.getLogger(__name__)


async def serve(config: SessionConfig) -> int:
    """Run one signaling session against the GStreamer runtime."""

    from .runtime import GstPeerConnection

    loop = asyncio.get_running_loop()
    session = Session(config, loop=loop)
    events = EventQueue(loop)
    peer = GstPeerConnection(config, events, loop=loop)
    client = SendRecvClient(session, peer, peer, events)
    return await client.run()


def build_config(args: argparse.Namespace) -> SessionConfig:
    if args.config:
        return load_config(
            args.config,
            server_url=args.server,
            peer_id=args.peer_id,
            our_id=args.our_id,
            disable_tls_verification=True if args.disable_ssl else None,
        )
    return SessionConfig(
        identity=PeerIdentity(peer_id=args.peer_id, our_id=args.our_id),
        server_url=args.server or DEFAULT_SERVER_URL,
        disable_tls_verification=args.disable_ssl,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="WebRTC send/receive signaling peer")
    parser.add_argument("--peer-id", default=None, help="peer to call (we send the offer)")
    parser.add_argument("--our-id", default=None, help="id to register under and wait to be called")
    parser.add_argument("--server", default=None, help=f"signaling server to connect to (default {DEFAULT_SERVER_URL})")
    parser.add_argument("--disable-ssl", action="store_true", help="do not verify the server certificate")
    parser.add_argument("--config", default=None, help="YAML profile with session settings")
    parser.add_argument("--log-level", default="info", type=parse_level, help="logging level (name or number)")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = build_config(args)
    except ConfigurationError as exc:
        LOG.error("%s", exc)
        return 2

    from .runtime import check_plugins

    try:
        missing = check_plugins()
    except CollaboratorUnavailable as exc:
        LOG.error("%s", exc)
        return 1
    if missing:
        return 1

    if not config.verify_tls:
        LOG.info("Server certificate verification is disabled for %s", config.server_url)

    try:
        return asyncio.run(serve(config))
    except KeyboardInterrupt:
        LOG.info("Interrupted by user.")
        return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
