"""Deepgram live transcription client for the 8 kHz call stream."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from urllib.parse import urlencode

import websockets

from callbridge.constants import (
    CALL_SAMPLE_RATE,
    DEEPGRAM_MODEL,
    TRANSCRIBER_CLOSE_TIMEOUT,
    TRANSCRIBER_KEEPALIVE_INTERVAL,
    TRANSCRIBER_SEND_QUEUE_MAX,
)
from callbridge.errors import ErrorCode

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[str], Awaitable[None] | None]


class DeepgramLiveTranscriber:
    """One live Deepgram stream per call.

    ``send_audio`` and ``finalize`` only enqueue; a sender task owns every
    write to the Deepgram socket, so a slow stream never holds up the call's
    receive loop. ``Results`` messages come back on a receive task and are
    handed to *on_transcript*. Failures are logged as ``E_STT_FAILED`` and
    swallowed: a dead transcription stream degrades the call but does not
    end it.

    Parameters
    ----------
    api_key : str
        Deepgram API key (from DEEPGRAM_API_KEY env var).
    on_transcript : callable
        Invoked with each non-empty transcript piece. May be sync or async.
    sample_rate : int
        Sample rate of the call stream (default 8 kHz).
    """

    WS_URL = "wss://api.deepgram.com/v1/listen"

    def __init__(
        self,
        api_key: str,
        *,
        on_transcript: TranscriptCallback | None = None,
        sample_rate: int = CALL_SAMPLE_RATE,
        model: str = DEEPGRAM_MODEL,
        keepalive_interval: float = TRANSCRIBER_KEEPALIVE_INTERVAL,
        max_pending: int = TRANSCRIBER_SEND_QUEUE_MAX,
        close_timeout: float = TRANSCRIBER_CLOSE_TIMEOUT,
    ) -> None:
        self._api_key = api_key
        self._sample_rate = sample_rate
        self._model = model
        self._keepalive_interval = keepalive_interval
        self._close_timeout = close_timeout
        self.on_transcript = on_transcript

        self._ws = None
        self._outgoing: asyncio.Queue[bytes | str] = asyncio.Queue(maxsize=max_pending)
        self._dropped = 0
        self._send_task: asyncio.Task | None = None
        self._recv_task: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        query = urlencode({
            "model": self._model,
            "encoding": "linear16",
            "sample_rate": self._sample_rate,
            "channels": 1,
        })
        return f"{self.WS_URL}?{query}"

    @property
    def pending_count(self) -> int:
        return self._outgoing.qsize()

    async def start(self) -> bool:
        """Open the live stream. Returns ``False`` (and logs) on failure."""
        if not self._api_key:
            logger.error("[STT] %s: DEEPGRAM_API_KEY not set, transcription disabled.", ErrorCode.E_STT_FAILED.value)
            return False

        headers = {"Authorization": f"Token {self._api_key}"}
        try:
            self._ws = await websockets.connect(self.url, additional_headers=headers)
        except Exception as exc:
            logger.error("[STT] %s: could not open Deepgram stream: %s", ErrorCode.E_STT_FAILED.value, exc)
            self._ws = None
            return False

        logger.info("[STT] Deepgram stream open (model=%s, rate=%d)", self._model, self._sample_rate)
        self._send_task = asyncio.create_task(self._send_loop())
        self._recv_task = asyncio.create_task(self._receive_loop())
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        return True

    async def send_audio(self, frame: bytes) -> None:
        """Queue *frame* for Deepgram. Never waits on the network."""
        self._enqueue(frame)

    async def finalize(self) -> None:
        """Ask Deepgram to flush whatever it has buffered for this utterance."""
        self._enqueue(json.dumps({"type": "Finalize"}))

    async def close(self) -> None:
        """Queue ``CloseStream``, give the sender a moment to flush, then tear down."""
        if self._ws is None:
            return
        self._enqueue(json.dumps({"type": "CloseStream"}))
        try:
            await asyncio.wait_for(self._outgoing.join(), timeout=self._close_timeout)
        except asyncio.TimeoutError:
            logger.warning("[STT] %d message(s) still queued at close, discarding.", self._outgoing.qsize())

        for task in (self._keepalive_task, self._send_task, self._recv_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._keepalive_task = self._send_task = self._recv_task = None

        ws, self._ws = self._ws, None
        try:
            await asyncio.wait_for(ws.close(), timeout=self._close_timeout)
        except Exception as exc:
            logger.debug("[STT] Close error (ignored): %s", exc)
        if self._dropped:
            logger.warning("[STT] %d message(s) dropped while Deepgram was backed up.", self._dropped)
        logger.info("[STT] Deepgram stream closed.")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _enqueue(self, message: bytes | str) -> None:
        if self._ws is None:
            return
        try:
            self._outgoing.put_nowait(message)
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped == 1:
                logger.warning("[STT] Send queue full, dropping audio until Deepgram catches up.")

    async def _send_loop(self) -> None:
        while True:
            message = await self._outgoing.get()
            try:
                await self._ws.send(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("[STT] %s: send error: %s", ErrorCode.E_STT_FAILED.value, exc)
            finally:
                self._outgoing.task_done()

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            self._enqueue(json.dumps({"type": "KeepAlive"}))

    async def _receive_loop(self) -> None:
        try:
            async for raw in self._ws:
                text = raw if isinstance(raw, str) else raw.decode()
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError:
                    continue

                msg_type = payload.get("type", "")
                if msg_type == "Results":
                    transcript = _extract_transcript(payload)
                    if transcript:
                        logger.info("[STT] Transcript: %s", transcript)
                        await self._emit(transcript)
                elif msg_type == "Metadata":
                    logger.debug("[STT] Deepgram metadata: request_id=%s", payload.get("request_id"))
        except websockets.exceptions.ConnectionClosed:
            logger.info("[STT] Deepgram stream closed by remote.")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[STT] %s: transcript receive error: %s", ErrorCode.E_STT_FAILED.value, exc)

    async def _emit(self, transcript: str) -> None:
        if self.on_transcript is None:
            return
        result = self.on_transcript(transcript)
        if asyncio.iscoroutine(result):
            await result


def _extract_transcript(payload: dict) -> str:
    try:
        return payload["channel"]["alternatives"][0]["transcript"].strip()
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
