"""
Logging helpers for the signaling peer and relay.

Centralising log configuration keeps the protocol modules focused on their
state handling and lets the CLI entrypoints share one format.
"""

from __future__ import annotations

import logging
import sys
from typing import Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def parse_level(level: Union[int, str]) -> int:
    """
    Translate ``"debug"``/``"INFO"``/``10`` style values into a logging level.
    """

    if isinstance(level, int):
        return level
    text = str(level).strip()
    if text.isdigit():
        return int(text)
    value = logging.getLevelName(text.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level '{level}'")
    return value


NOISY_LOGGERS = ("websockets", "uvicorn.access")


def configure_logging(level: int = logging.INFO) -> None:
    """
    Route sendrecv logs to stdout at ``level``, a value from :func:`parse_level`.

    An existing root configuration (pytest, an embedding application) is left
    alone; only the package logger level is applied.  Protocol chatter from
    the websocket libraries stays at warning unless debugging.
    """

    logging.getLogger("sendrecv").setLevel(level)
    noisy_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
