"""Serialized per-session turn dispatcher.

The real-time receive loop hands completed utterances to ``submit`` and moves
on. A single consumer task runs one turn pipeline invocation at a time, each
as its own ``asyncio.Task``, and only takes the next history snapshot after
the previous invocation's events have been drained from the outbound queue.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

from callbridge.constants import TURN_SHUTDOWN_GRACE_S
from callbridge.pipeline.session_context import SessionContext
from callbridge.pipeline.turn import TurnInput
from callbridge.utils import generate_turn_id

logger = logging.getLogger(__name__)

TurnRunner = Callable[[TurnInput], Coroutine[Any, Any, None]]


class TurnQueue:
    """Runs turn invocations for one session strictly one after another."""

    def __init__(
        self,
        context: SessionContext,
        runner: TurnRunner,
        *,
        shutdown_grace: float = TURN_SHUTDOWN_GRACE_S,
    ) -> None:
        self._context = context
        self._runner = runner
        self._shutdown_grace = shutdown_grace
        self._pending: asyncio.Queue[str] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self._current: asyncio.Task | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume())

    def submit(self, transcript: str) -> bool:
        """Queue *transcript* for a turn. Never blocks; ``False`` once shut down."""
        if self._closed:
            logger.info("[TurnQueue] Session %s closing — utterance dropped.", self._context.session_id)
            return False
        self._pending.put_nowait(transcript)
        logger.info(
            "[TurnQueue] Utterance queued for session %s. Pending: %d",
            self._context.session_id,
            self._pending.qsize(),
        )
        return True

    @property
    def pending_count(self) -> int:
        return self._pending.qsize()

    @property
    def in_flight(self) -> bool:
        return self._current is not None and not self._current.done()

    async def shutdown(self) -> bool:
        """Stop accepting turns and settle the in-flight one.

        Queued utterances are dropped. An in-flight invocation gets
        ``shutdown_grace`` seconds to finish; after that it is cancelled and
        awaited, and whatever it had not yet published is lost. Returns
        ``True`` if nothing had to be abandoned.
        """
        self._closed = True

        dropped = 0
        while not self._pending.empty():
            self._pending.get_nowait()
            dropped += 1
        if dropped:
            logger.info("[TurnQueue] Dropped %d queued utterance(s).", dropped)

        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

        current, self._current = self._current, None
        if current is None or current.done():
            return True

        done, _ = await asyncio.wait({current}, timeout=self._shutdown_grace)
        if done:
            logger.info("[TurnQueue] In-flight turn finished during shutdown.")
            return True

        logger.warning(
            "[TurnQueue] In-flight turn exceeded %.1fs grace — abandoning.",
            self._shutdown_grace,
        )
        current.cancel()
        try:
            await current
        except asyncio.CancelledError:
            pass
        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            transcript = await self._pending.get()
            self._context.turn_count += 1
            turn = TurnInput(
                session_id=self._context.session_id,
                history=self._context.history_snapshot(),
                transcript=transcript,
                turn_id=generate_turn_id(),
            )
            self._current = asyncio.create_task(self._runner(turn))

            # asyncio.wait leaves the invocation running if this consumer is
            # cancelled; shutdown decides its fate.
            await asyncio.wait({self._current})
            self._log_outcome(turn, self._current)
            self._current = None

            await self._context.outbound.join()

    def _log_outcome(self, turn: TurnInput, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("[TurnQueue] Turn %s was cancelled.", turn.turn_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[TurnQueue] Turn %s failed: %s", turn.turn_id, exc, exc_info=exc)
