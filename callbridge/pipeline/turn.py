"""Turn pipeline — one caller utterance in, agent speech and history out.

``run_turn`` never raises for pipeline failures: completion and synthesis
errors become a single ``TurnError`` event. Cancellation is not caught; a
cancelled invocation simply stops publishing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from callbridge.errors import CallbridgeError, ErrorCode
from callbridge.pipeline.completion_phase import get_response_completion
from callbridge.pipeline.messages import HistoryUpdate, PipelineEvent, TurnError
from callbridge.pipeline.tts_phase import run_tts
from callbridge.telemetry import call_span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnInput:
    session_id: str
    history: list[dict[str, str]]
    transcript: str
    turn_id: str = ""


async def run_turn(
    turn: TurnInput,
    outbound: asyncio.Queue[PipelineEvent],
    chat_model: Any,
    tts_client: Any,
) -> None:
    """Run completion then synthesis for *turn*, publishing events on *outbound*."""
    span_args = {"session_id": turn.session_id, "turn_id": turn.turn_id, "transcript_len": len(turn.transcript)}
    with call_span("turn", **span_args):
        history = [*turn.history, {"role": "user", "content": turn.transcript}]
        logger.info("[Turn %s] Caller said: %s", turn.turn_id, turn.transcript)

        try:
            history = await get_response_completion(history, chat_model)
            await run_tts(history[-1]["content"], tts_client, outbound)
        except CallbridgeError as exc:
            logger.error("[Turn %s] %s: %s", turn.turn_id, exc.code.value, exc)
            await outbound.put(TurnError(exc.code, str(exc)))
            return
        except Exception as exc:
            logger.error("[Turn %s] Unexpected failure: %s", turn.turn_id, exc, exc_info=True)
            await outbound.put(TurnError(ErrorCode.E_TURN_FAILED, str(exc)))
            return

        await outbound.put(HistoryUpdate(history))
        logger.info("[Turn %s] Complete. History length: %d", turn.turn_id, len(history))
