"""Integer-ratio PCM-16 decimation and fixed-size framing.

Synthesized speech arrives as 16 kHz PCM and the call runs at 8 kHz, so every
other sample is kept. There is no anti-aliasing filter: adding a low-pass
stage would change the emitted samples and is a behavior change, not a fix.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import numpy as np

from callbridge.constants import CALL_FRAME_BYTES, DECIMATION_RATIO, SAMPLE_WIDTH_BYTES


def decimate(pcm: bytes, ratio: int = DECIMATION_RATIO) -> bytes:
    """Keep every *ratio*-th sample of *pcm*, starting with the first."""
    samples = np.frombuffer(pcm, dtype="<i2")
    return samples[::ratio].tobytes()


class PCMDecimator:
    """Rolling-buffer decimator emitting frames of exactly *frame_bytes*.

    Each emitted frame consumes ``frame_bytes * ratio`` source bytes
    (640 bytes of 16 kHz audio → one 320-byte 8 kHz call frame).
    """

    def __init__(self, ratio: int = DECIMATION_RATIO, frame_bytes: int = CALL_FRAME_BYTES) -> None:
        if ratio < 1:
            raise ValueError("ratio must be a positive integer")
        if frame_bytes <= 0 or frame_bytes % SAMPLE_WIDTH_BYTES:
            raise ValueError("frame_bytes must be a positive multiple of the sample width")
        self._ratio = ratio
        self._frame_bytes = frame_bytes
        self._source_step = frame_bytes * ratio
        self._buffer = bytearray()

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Buffer *data* and return every complete output frame now available."""
        self._buffer.extend(data)
        frames: list[bytes] = []
        while len(self._buffer) >= self._source_step:
            chunk = bytes(self._buffer[: self._source_step])
            del self._buffer[: self._source_step]
            frames.append(decimate(chunk, self._ratio))
        return frames

    def flush(self) -> bytes | None:
        """Emit the trailing partial frame at end of stream.

        Only whole groups of *ratio* samples are used; anything shorter,
        including a dangling odd byte, is dropped.
        """
        group = SAMPLE_WIDTH_BYTES * self._ratio
        usable = len(self._buffer) - (len(self._buffer) % group)
        remainder = bytes(self._buffer[:usable])
        self._buffer.clear()
        if not remainder:
            return None
        return decimate(remainder, self._ratio)


async def decimate_stream(
    source: AsyncIterator[bytes],
    *,
    ratio: int = DECIMATION_RATIO,
    frame_bytes: int = CALL_FRAME_BYTES,
) -> AsyncIterator[bytes]:
    """Lazily decimate an async byte stream into call-sized frames."""
    decimator = PCMDecimator(ratio=ratio, frame_bytes=frame_bytes)
    async for data in source:
        for frame in decimator.feed(data):
            yield frame
    tail = decimator.flush()
    if tail:
        yield tail
