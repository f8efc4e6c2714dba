"""Tests for PCM decimation and call-frame chunking.

Run:
    uv run pytest tests/test_resample.py -v
"""

import struct

import pytest

from callbridge.audio.resample import PCMDecimator, decimate, decimate_stream


def _pcm(values) -> bytes:
    values = list(values)
    return struct.pack(f"<{len(values)}h", *values)


def _samples(data: bytes) -> list[int]:
    return list(struct.unpack(f"<{len(data) // 2}h", data))


async def _collect(source):
    return [frame async for frame in source]


async def _chunks(*parts):
    for part in parts:
        yield part


class TestDecimate:
    def test_keeps_even_index_samples(self):
        assert _samples(decimate(_pcm([1, 2, 3, 4, 5, 6]))) == [1, 3, 5]

    def test_odd_sample_count_keeps_last_even_index(self):
        assert _samples(decimate(_pcm([1, 2, 3]))) == [1, 3]


class TestPCMDecimator:
    """Rolling-buffer framing."""

    def test_full_frame_consumes_640_source_bytes(self):
        dec = PCMDecimator()
        frames = dec.feed(_pcm(range(320)))
        assert len(frames) == 1
        assert len(frames[0]) == 320
        assert dec.pending_bytes == 0

    def test_partial_input_is_buffered(self):
        dec = PCMDecimator()
        assert dec.feed(_pcm(range(100))) == []
        assert dec.pending_bytes == 200

    def test_frames_span_chunk_boundaries(self):
        dec = PCMDecimator()
        source = _pcm(range(700))
        frames = dec.feed(source[:333]) + dec.feed(source[333:1001]) + dec.feed(source[1001:])
        assert [len(f) for f in frames] == [320, 320]
        assert _samples(b"".join(frames)) == list(range(0, 640, 2))

    def test_flush_emits_trailing_short_frame(self):
        dec = PCMDecimator()
        dec.feed(_pcm(range(10)))
        assert _samples(dec.flush()) == [0, 2, 4, 6, 8]
        assert dec.pending_bytes == 0

    def test_flush_drops_less_than_one_sample_pair(self):
        dec = PCMDecimator()
        dec.feed(_pcm([7]) + b"\x01")
        assert dec.flush() is None

    def test_flush_truncates_dangling_odd_byte(self):
        dec = PCMDecimator()
        dec.feed(_pcm([1, 2, 3, 4]) + b"\x09")
        assert _samples(dec.flush()) == [1, 3]

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            PCMDecimator(ratio=0)
        with pytest.raises(ValueError):
            PCMDecimator(frame_bytes=321)


class TestDecimateStream:
    """Whole-stream properties of the async decimator."""

    @pytest.mark.asyncio
    async def test_output_sample_count_is_half_input(self):
        for n in (0, 1, 2, 3, 319, 320, 321, 640, 1001):
            source = _pcm(range(n))
            frames = await _collect(decimate_stream(_chunks(source[:101], source[101:])))
            assert sum(len(f) for f in frames) // 2 == n // 2

    @pytest.mark.asyncio
    async def test_preserves_order(self):
        values = [(i * 37) % 30000 - 15000 for i in range(1500)]
        source = _pcm(values)
        parts = [source[i:i + 250] for i in range(0, len(source), 250)]
        frames = await _collect(decimate_stream(_chunks(*parts)))
        assert _samples(b"".join(frames)) == values[::2]

    @pytest.mark.asyncio
    async def test_all_but_last_frame_are_full_size(self):
        frames = await _collect(decimate_stream(_chunks(_pcm(range(1000)))))
        assert [len(f) for f in frames] == [320, 320, 320, 40]
