"""callbridge — per-call voice session controller for telephony WebSocket streams."""

__version__ = "0.1.0"
