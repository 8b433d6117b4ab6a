"""Retro Chat backend: room-scoped real-time text broadcast over WebSockets."""

__version__ = "0.1.0"
