"""Centralized ID generation utilities for callbridge."""

import uuid


def generate_session_id() -> str:
    """Generate a unique call session ID.

    Returns:
        ``call-`` followed by 16 hex characters. IDs are random, so a
        session ID is never reused across calls.
    """
    return f"call-{uuid.uuid4().hex[:16]}"


def generate_turn_id() -> str:
    """Generate a short ID for one turn pipeline invocation.

    Returns:
        A short 8-character hex string.
    """
    return uuid.uuid4().hex[:8]
