"""Utility helpers for the signaling peer."""

from .logging import configure_logging, parse_level

__all__ = ["configure_logging", "parse_level"]
