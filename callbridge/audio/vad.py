"""Energy VAD — frame loudness classifier and utterance segmenter.

``frame_energy`` scores one PCM-16 frame; ``EnergyVADSegmenter`` turns a
stream of scored frames into utterance boundaries and pairs each boundary
with the transcript text that arrived while the caller was speaking.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import numpy as np

from callbridge.constants import ENERGY_THRESHOLD, MIN_TRANSCRIPT_CHARS, SILENCE_FRAME_LIMIT

logger = logging.getLogger(__name__)


def frame_energy(frame: bytes) -> float:
    """Return the mean of squared sample values of *frame* (PCM-16 LE).

    The caller guarantees an even byte length. An empty frame scores 0.0.
    """
    samples = np.frombuffer(frame, dtype="<i2")
    if samples.size == 0:
        return 0.0
    return float(np.mean(samples.astype(np.float64) ** 2))


class EnergyVADSegmenter:
    """Two-state (idle / speaking) energy segmenter.

    Parameters
    ----------
    energy_threshold : float
        ``frame_energy`` value a frame must exceed to count as speech.
    silence_frame_limit : int
        Consecutive sub-threshold frames that end an utterance
        (25 × 20ms = 500ms at the call frame size).
    """

    def __init__(
        self,
        *,
        energy_threshold: float = ENERGY_THRESHOLD,
        silence_frame_limit: int = SILENCE_FRAME_LIMIT,
    ) -> None:
        if silence_frame_limit < 1:
            raise ValueError("silence_frame_limit must be at least 1")

        self._energy_threshold = energy_threshold
        self._silence_frame_limit = silence_frame_limit

        # Internal streaming state
        self._is_speaking: bool = False
        self._silence_frames: int = 0
        self._transcript: str = ""

        # Awaited at every end of speech, before the transcript is taken
        self.on_finalize: Callable[[], Awaitable[None]] | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_speaking(self) -> bool:
        return self._is_speaking

    @property
    def silence_run_length(self) -> int:
        return self._silence_frames

    @property
    def transcript(self) -> str:
        return self._transcript

    def append_transcript(self, text: str) -> None:
        """Accumulate transcript text for the utterance being assembled.

        Called from the transcription receive task, independently of frame
        timing. Pieces are joined with a single space.
        """
        text = text.strip()
        if not text:
            return
        self._transcript = f"{self._transcript} {text}" if self._transcript else text

    async def process_frame(self, frame: bytes) -> str | None:
        """Score *frame*, advance the state machine, and return the
        completed utterance transcript if this frame closed one."""
        energy = frame_energy(frame)

        if energy > self._energy_threshold:
            if not self._is_speaking:
                self._is_speaking = True
                logger.info("[VAD] Speech detected (energy=%.1f)", energy)
            self._silence_frames = 0
            return None

        if not self._is_speaking:
            return None

        self._silence_frames += 1
        if self._silence_frames < self._silence_frame_limit:
            return None

        logger.info("[VAD] Silence detected after %d frames", self._silence_frames)
        self._is_speaking = False
        self._silence_frames = 0
        if self.on_finalize is not None:
            await self.on_finalize()

        transcript = self._transcript
        self._transcript = ""
        if len(transcript) < MIN_TRANSCRIPT_CHARS:
            logger.info("[VAD] Empty/trivial transcript — no utterance emitted.")
            return None

        return transcript

    def reset(self) -> None:
        """Reset all streaming state."""
        self._is_speaking = False
        self._silence_frames = 0
        self._transcript = ""
