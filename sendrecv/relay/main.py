"""
Relay process entrypoint: ``python -m sendrecv.relay`` or ``sendrecv-relay``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ..utils.logging import configure_logging, parse_level
from .server import RelayManager, create_app

LOG = logging.getLogger(__name__)


async def serve(
    host: str = "0.0.0.0",
    port: int = 8443,
    *,
    cert_path: Optional[str] = None,
    key_path: Optional[str] = None,
    log_level: int = logging.INFO,
) -> None:
    """
    Run the relay inside an asyncio loop.

    TLS is enabled when both ``cert_path`` and ``key_path`` are given.
    """

    import uvicorn

    manager = RelayManager()

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Relay listening on %s:%d", host, port)
        try:
            yield
        finally:
            LOG.info("Relay shutting down with %d peers connected", len(manager.peers))

    app = create_app(manager=manager, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level=log_level,
        ssl_certfile=cert_path if cert_path and key_path else None,
        ssl_keyfile=key_path if cert_path and key_path else None,
    )
    server = uvicorn.Server(config=server_config)
    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="sendrecv signaling relay")
    parser.add_argument("--addr", default="0.0.0.0", help="address to listen on")
    parser.add_argument("--port", type=int, default=8443, help="port to listen on")
    parser.add_argument("--cert-path", default=None, help="TLS certificate (PEM)")
    parser.add_argument("--key-path", default=None, help="TLS private key (PEM)")
    parser.add_argument("--disable-ssl", action="store_true", help="serve plain ws:// even if a certificate is given")
    parser.add_argument("--log-level", default="info", type=parse_level, help="logging level (name or number)")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    cert_path = None if args.disable_ssl else args.cert_path
    key_path = None if args.disable_ssl else args.key_path

    try:
        asyncio.run(
            serve(args.addr, args.port, cert_path=cert_path, key_path=key_path, log_level=args.log_level)
        )
    except KeyboardInterrupt:
        LOG.info("Relay interrupted by user.")


if __name__ == "__main__":
    run()
