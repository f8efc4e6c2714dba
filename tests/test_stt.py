"""Tests for the Deepgram live transcription client.

The websocket is replaced with an in-memory fake; nothing touches the network.

Run:
    uv run pytest tests/test_stt.py -v
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, patch

import pytest

from callbridge.audio.stt import DeepgramLiveTranscriber


class _AsyncIter:
    """Helper to make a list of items async-iterable for mocking websockets."""

    def __init__(self, items):
        self._items = list(items)
        self._index = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._index >= len(self._items):
            raise StopAsyncIteration
        item = self._items[self._index]
        self._index += 1
        return item


class _FakeSocket:
    def __init__(self, messages=()):
        self._messages = messages
        self.sent = []
        self.closed = False

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return _AsyncIter(self._messages)

    def control_types(self):
        return [json.loads(m)["type"] for m in self.sent if isinstance(m, str)]


def _results(transcript):
    return json.dumps({
        "type": "Results",
        "channel": {"alternatives": [{"transcript": transcript, "confidence": 0.98}]},
        "is_final": True,
    })


class TestDeepgramLiveConfig:
    def test_url_query(self):
        url = DeepgramLiveTranscriber("k").url
        assert url.startswith("wss://api.deepgram.com/v1/listen?")
        assert "model=nova-2-voicemail" in url
        assert "encoding=linear16" in url
        assert "sample_rate=8000" in url
        assert "channels=1" in url

    @pytest.mark.asyncio
    async def test_auth_header(self):
        ws = _FakeSocket()
        connect = AsyncMock(return_value=ws)
        with patch("websockets.connect", connect):
            stt = DeepgramLiveTranscriber("my-secret-key")
            assert await stt.start() is True
            await stt.close()

        headers = connect.call_args[1]["additional_headers"]
        assert headers["Authorization"] == "Token my-secret-key"

    @pytest.mark.asyncio
    async def test_empty_api_key_does_not_connect(self):
        connect = AsyncMock()
        with patch("websockets.connect", connect):
            assert await DeepgramLiveTranscriber("").start() is False
        connect.assert_not_called()


class TestDeepgramLiveStreaming:
    @pytest.mark.asyncio
    async def test_results_are_delivered_to_callback(self):
        ws = _FakeSocket([
            json.dumps({"type": "Metadata", "request_id": "r1"}),
            _results("hello"),
            _results(""),
            "not json",
            _results(" there "),
        ])
        received = []
        stt = DeepgramLiveTranscriber("k", on_transcript=received.append)

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            await stt._recv_task
            await stt.close()

        assert received == ["hello", "there"]

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self):
        ws = _FakeSocket([_results("yes please")])
        callback = AsyncMock()
        stt = DeepgramLiveTranscriber("k", on_transcript=callback)

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            await stt._recv_task
            await stt.close()

        callback.assert_awaited_once_with("yes please")

    @pytest.mark.asyncio
    async def test_audio_and_control_messages(self):
        ws = _FakeSocket()
        stt = DeepgramLiveTranscriber("k")

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            await stt.send_audio(b"\x00\x00" * 160)
            await stt.finalize()
            await stt.close()

        assert ws.sent[0] == b"\x00\x00" * 160
        assert ws.control_types() == ["Finalize", "CloseStream"]
        assert ws.closed is True
        assert stt.pending_count == 0

    @pytest.mark.asyncio
    async def test_keepalive_sent_periodically(self):
        ws = _FakeSocket()
        stt = DeepgramLiveTranscriber("k", keepalive_interval=0.01)

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            await asyncio.sleep(0.05)
            await stt.close()

        assert "KeepAlive" in ws.control_types()


class TestDeepgramLiveFailures:
    """Transcription failures are logged, never raised."""

    @pytest.mark.asyncio
    async def test_connect_failure_returns_false(self, caplog):
        stt = DeepgramLiveTranscriber("k")
        with patch("websockets.connect", AsyncMock(side_effect=OSError("refused"))):
            with caplog.at_level(logging.ERROR, logger="callbridge.audio.stt"):
                assert await stt.start() is False
        assert "E_STT_FAILED" in caplog.text

        # Calls after a failed start are harmless no-ops
        await stt.send_audio(b"\x00\x00")
        await stt.finalize()
        await stt.close()

    @pytest.mark.asyncio
    async def test_send_failure_is_swallowed(self):
        ws = _FakeSocket()
        ws.send = AsyncMock(side_effect=RuntimeError("socket gone"))
        stt = DeepgramLiveTranscriber("k")

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            await stt.send_audio(b"\x00\x00")
            await stt.finalize()
            await stt.close()


class _StalledSocket(_FakeSocket):
    """A Deepgram socket whose writes never complete (remote stopped reading)."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def send(self, data):
        await self.release.wait()
        self.sent.append(data)


class TestDeepgramLiveBackpressure:
    """The caller never waits on Deepgram writes."""

    @pytest.mark.asyncio
    async def test_stalled_send_does_not_block_callers(self):
        ws = _StalledSocket()
        stt = DeepgramLiveTranscriber("k", close_timeout=0.05)

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            for _ in range(10):
                await asyncio.wait_for(stt.send_audio(b"\x00\x00" * 160), timeout=0.1)
            await asyncio.wait_for(stt.finalize(), timeout=0.1)

            assert stt.pending_count >= 10
            await asyncio.wait_for(stt.close(), timeout=1.0)

        assert ws.closed is True

    @pytest.mark.asyncio
    async def test_queued_messages_flush_in_order_once_unblocked(self):
        ws = _StalledSocket()
        stt = DeepgramLiveTranscriber("k")

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            await stt.send_audio(b"\x01\x00")
            await stt.send_audio(b"\x02\x00")
            await stt.finalize()
            ws.release.set()
            await stt.close()

        assert ws.sent[:2] == [b"\x01\x00", b"\x02\x00"]
        assert ws.control_types() == ["Finalize", "CloseStream"]

    @pytest.mark.asyncio
    async def test_full_queue_drops_instead_of_waiting(self):
        ws = _StalledSocket()
        stt = DeepgramLiveTranscriber("k", max_pending=3, close_timeout=0.05)

        with patch("websockets.connect", AsyncMock(return_value=ws)):
            await stt.start()
            for _ in range(20):
                await asyncio.wait_for(stt.send_audio(b"\x00\x00"), timeout=0.1)
            assert stt.pending_count <= 3
            await stt.close()
