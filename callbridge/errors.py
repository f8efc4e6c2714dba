"""CallError envelope — structured error reporting over the call WebSocket.

Every error sent to the transport follows a consistent JSON shape so the
telephony side (or a debugging client) can tell pipeline failures apart, and
the backend logs remain machine-parseable.

Error codes
-----------
E_STT_FAILED         Deepgram live transcription error.
E_TTS_FAILED         ElevenLabs synthesis error (non-2xx, stream broken).
E_COMPLETION_FAILED  Chat model invocation raised.
E_TURN_FAILED        Any other failure inside a turn pipeline invocation.
E_TRANSPORT          Malformed frame or broken call socket.
E_RECORDING_FAILED   Call recording could not be written.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ErrorCode(str, enum.Enum):
    E_STT_FAILED = "E_STT_FAILED"
    E_TTS_FAILED = "E_TTS_FAILED"
    E_COMPLETION_FAILED = "E_COMPLETION_FAILED"
    E_TURN_FAILED = "E_TURN_FAILED"
    E_TRANSPORT = "E_TRANSPORT"
    E_RECORDING_FAILED = "E_RECORDING_FAILED"


class CallbridgeError(Exception):
    """Base class for errors raised by callbridge components."""

    code: ErrorCode = ErrorCode.E_TURN_FAILED


class ConfigError(CallbridgeError):
    """Required configuration is missing or malformed."""

    def __init__(self, missing: list[str], detail: str = "") -> None:
        self.missing = list(missing)
        if missing:
            message = "Missing environment variables: " + ", ".join(missing)
        else:
            message = f"Invalid configuration: {detail}"
        super().__init__(message)


class CompletionError(CallbridgeError):
    """The completion service failed or returned no usable message."""

    code = ErrorCode.E_COMPLETION_FAILED


class SynthesisError(CallbridgeError):
    """The synthesis service rejected the request or broke the stream."""

    code = ErrorCode.E_TTS_FAILED

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedFrameError(CallbridgeError):
    """An inbound audio frame violates the 16-bit PCM framing contract."""

    code = ErrorCode.E_TRANSPORT


@dataclass
class CallError:
    code: ErrorCode | str
    message: str
    recoverable: bool = True
    session_id: str = ""
    details: dict[str, Any] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": "error",
            "code": self.code.value if isinstance(self.code, ErrorCode) else self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "session_id": self.session_id,
        }
        if self.details:
            d["details"] = self.details
        return d


async def send_error(websocket: WebSocket, error: CallError) -> None:
    """Serialize *error* and send it as a JSON message on *websocket*.

    Silently catches send failures (the call may already have hung up).
    """
    try:
        await websocket.send_json(error.to_dict())
        logger.warning(
            "[CallError] Sent %s to transport: %s (session=%s)",
            error.to_dict()["code"],
            error.message,
            error.session_id,
        )
    except Exception as exc:
        logger.debug("[CallError] Failed to send error to transport: %s", exc)
