"""TTS phase — synthesize response text and publish call-rate audio chunks."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from callbridge.audio.resample import decimate_stream
from callbridge.pipeline.messages import AudioChunk, PipelineEvent
from callbridge.telemetry import call_span

logger = logging.getLogger(__name__)


async def run_tts(text: str, tts_client: Any, outbound: asyncio.Queue[PipelineEvent]) -> int:
    """Stream synthesized audio for *text* onto *outbound* as ``AudioChunk`` events.

    Returns the number of chunks published. Synthesis errors propagate after
    the chunks already published.
    """
    with call_span("tts", text_len=len(text)):
        chunk_count = 0
        async for frame in decimate_stream(tts_client.synthesize_stream(text)):
            await outbound.put(AudioChunk(frame))
            chunk_count += 1

        logger.info("[TTS] Queued %d audio chunks for the call.", chunk_count)
        if chunk_count == 0:
            logger.warning("[TTS] Zero audio chunks — synthesis returned no audio.")

        return chunk_count
