"""Call recorder — one ordered PCM buffer per call, muxed to WAV at hang-up."""

from __future__ import annotations

import io
import logging
import wave
from pathlib import Path

from callbridge.constants import CALL_SAMPLE_RATE, SAMPLE_WIDTH_BYTES

logger = logging.getLogger(__name__)

WAV_HEADER_BYTES = 44


def encode_wav(pcm: bytes, sample_rate: int = CALL_SAMPLE_RATE) -> bytes:
    """Wrap mono PCM-16 *pcm* in a canonical 44-byte RIFF/WAVE header."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(SAMPLE_WIDTH_BYTES)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm)
    return buf.getvalue()


class CallRecorder:
    """Accumulates inbound and outbound frames in arrival order."""

    def __init__(self, sample_rate: int = CALL_SAMPLE_RATE) -> None:
        self._sample_rate = sample_rate
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def __bytes__(self) -> bytes:
        return bytes(self._buffer)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def append(self, frame: bytes) -> None:
        self._buffer.extend(frame)

    def flush_to(self, path: str | Path) -> Path:
        """Write the whole recording to *path* in one shot and return it.

        Raises ``OSError`` on write failure; the caller decides whether that
        matters (session teardown logs it and moves on).
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = encode_wav(bytes(self._buffer), self._sample_rate)
        target.write_bytes(payload)
        logger.info(
            "[Recorder] Wrote %s (%d audio bytes, %.1fs)",
            target,
            len(self._buffer),
            len(self._buffer) / (self._sample_rate * SAMPLE_WIDTH_BYTES),
        )
        return target

    def clear(self) -> None:
        self._buffer = bytearray()
