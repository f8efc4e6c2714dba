"""CallSession — per-call audio session controller.

Data flow for one call:
  1. Provider streams 8 kHz PCM-16 frames → transcriber + recorder + VAD.
  2. Deepgram transcript pieces accumulate in the segmenter.
  3. On end of speech: Finalize → transcript handed to the turn queue.
  4. Turn pipeline (completion → ElevenLabs → decimation) publishes events.
  5. Drain task sends audio back into the call and applies history updates.
  6. On hang-up: turn queue settled, transcriber closed, WAV written.

The receive loop only ever awaits the socket. Frames for Deepgram are queued
to the transcriber's own sender task, so a stalled Deepgram connection never
delays the call. Once a non-recoverable transport error has been reported,
queued agent audio is still recorded but no longer written to the socket.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from callbridge.audio.stt import DeepgramLiveTranscriber
from callbridge.audio.vad import EnergyVADSegmenter
from callbridge.constants import RECORDING_FILENAME_TEMPLATE, SAMPLE_WIDTH_BYTES, TURN_SHUTDOWN_GRACE_S
from callbridge.errors import CallError, ErrorCode, MalformedFrameError, send_error
from callbridge.pipeline.messages import AudioChunk, HistoryUpdate, PipelineEvent, TurnError
from callbridge.pipeline.session_context import SessionContext, SessionStatus
from callbridge.pipeline.turn import TurnInput, run_turn
from callbridge.pipeline.turn_queue import TurnQueue
from callbridge.settings import Settings
from callbridge.telemetry import call_span
from callbridge.utils import generate_session_id

logger = logging.getLogger(__name__)


class CallSession:
    """Owns every resource of one phone call from accept to teardown."""

    def __init__(
        self,
        websocket: WebSocket,
        settings: Settings,
        *,
        transcriber: DeepgramLiveTranscriber,
        chat_model: Any,
        tts: Any,
        session_id: str | None = None,
        shutdown_grace: float = TURN_SHUTDOWN_GRACE_S,
    ) -> None:
        self.websocket = websocket
        self.settings = settings
        self.transcriber = transcriber
        self._chat_model = chat_model
        self._tts = tts
        self._shutdown_grace = shutdown_grace

        segmenter = EnergyVADSegmenter(
            energy_threshold=settings.energy_threshold,
            silence_frame_limit=settings.silence_frame_limit,
        )
        self.context = SessionContext(session_id=session_id or generate_session_id(), segmenter=segmenter)
        self.turn_queue = TurnQueue(self.context, self._run_turn, shutdown_grace=shutdown_grace)

        segmenter.on_finalize = self.transcriber.finalize
        self.transcriber.on_transcript = segmenter.append_transcript

        self._drain_task: asyncio.Task | None = None
        self._close_started = False
        self._transport_failed = False
        self.recording_path: Path | None = None

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def status(self) -> SessionStatus:
        return self.context.status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        self.context.status = SessionStatus.OPEN
        logger.info("[Session %s] Call connected.", self.session_id)

        if not await self.transcriber.start():
            logger.warning("[Session %s] Transcription unavailable — call continues without it.", self.session_id)

        self._drain_task = asyncio.create_task(self._drain())
        self.turn_queue.start()

    async def run(self) -> None:
        """Serve the call until the provider hangs up or the socket breaks."""
        with call_span("call", session_id=self.session_id) as span:
            await self.open()
            try:
                await self._receive_loop()
            except WebSocketDisconnect:
                logger.info("[Session %s] Call disconnected.", self.session_id)
            except MalformedFrameError as exc:
                logger.error("[Session %s] Transport error: %s", self.session_id, exc)
                await send_error(
                    self.websocket,
                    CallError(code=exc.code, message=str(exc), recoverable=False, session_id=self.session_id),
                )
                self._transport_failed = True
            finally:
                await self.close()
                span.set_attribute("call.turns", self.context.turn_count)

    async def _receive_loop(self) -> None:
        while True:
            try:
                message = await self.websocket.receive()
            except RuntimeError:
                # "Cannot call receive once a disconnect message has been received"
                logger.info("[Session %s] Call disconnected (runtime).", self.session_id)
                return

            if message.get("type") == "websocket.disconnect":
                logger.info("[Session %s] Call disconnected.", self.session_id)
                return

            if message.get("bytes") is not None:
                await self.handle_frame(message["bytes"])
            elif message.get("text") is not None:
                await self.handle_text(message["text"])

    async def close(self) -> None:
        """Tear the call down. Safe to call more than once."""
        if self._close_started:
            return
        self._close_started = True
        self.context.status = SessionStatus.CLOSING
        logger.info("[Session %s] Closing after %d turn(s).", self.session_id, self.context.turn_count)

        await self.turn_queue.shutdown()
        await self._stop_drain()
        await self.transcriber.close()
        await self._flush_recording()

        self.context.recorder.clear()
        self.context.segmenter.reset()
        self.context.status = SessionStatus.CLOSED
        logger.info("[Session %s] Closed after %.1fs.", self.session_id, time.time() - self.context.created_at)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_frame(self, frame: bytes) -> None:
        if self.context.status is not SessionStatus.OPEN:
            return
        if len(frame) % SAMPLE_WIDTH_BYTES:
            raise MalformedFrameError(f"Audio frame of {len(frame)} bytes is not whole 16-bit samples")

        await self.transcriber.send_audio(frame)
        self.context.recorder.append(frame)

        transcript = await self.context.segmenter.process_frame(frame)
        if transcript:
            self.turn_queue.submit(transcript)

    async def handle_text(self, text: str) -> None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("[Session %s] Non-JSON text message ignored", self.session_id)
            return

        event = payload.get("event") if isinstance(payload, dict) else None
        if event:
            logger.info("[Session %s] Provider event: %s", self.session_id, event)
        else:
            logger.debug("[Session %s] Control message: %s", self.session_id, payload)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _run_turn(self, turn: TurnInput) -> None:
        await run_turn(turn, self.context.outbound, self._chat_model, self._tts)

    async def _drain(self) -> None:
        outbound = self.context.outbound
        while True:
            event = await outbound.get()
            try:
                await self._deliver(event)
            except Exception as exc:
                logger.debug("[Session %s] Outbound delivery failed: %s", self.session_id, exc)
            finally:
                outbound.task_done()

    async def _deliver(self, event: PipelineEvent) -> None:
        if isinstance(event, AudioChunk):
            self.context.recorder.append(event.chunk)
            if not self._transport_failed:
                await self.websocket.send_bytes(event.chunk)
        elif isinstance(event, HistoryUpdate):
            self.context.history = event.history
            logger.info("[Session %s] History updated (%d messages).", self.session_id, len(event.history))
        elif isinstance(event, TurnError) and not self._transport_failed:
            await send_error(
                self.websocket,
                CallError(code=event.code, message=event.message, session_id=self.session_id),
            )

    async def _stop_drain(self) -> None:
        if self._drain_task is None:
            return
        try:
            await asyncio.wait_for(self.context.outbound.join(), timeout=self._shutdown_grace)
        except asyncio.TimeoutError:
            logger.warning("[Session %s] Outbound queue not drained before close.", self.session_id)

        self._drain_task.cancel()
        try:
            await self._drain_task
        except asyncio.CancelledError:
            pass
        self._drain_task = None

    async def _flush_recording(self) -> None:
        path = Path(self.settings.recordings_dir) / RECORDING_FILENAME_TEMPLATE.format(session_id=self.session_id)
        try:
            self.recording_path = await asyncio.to_thread(self.context.recorder.flush_to, path)
        except OSError as exc:
            logger.error("[Session %s] Recording write failed (%s): %s", self.session_id, ErrorCode.E_RECORDING_FAILED.value, exc)
