"""Tests for the ElevenLabs streaming TTS client.

Uses ``httpx.MockTransport`` so requests never leave the process.

Run:
    uv run pytest tests/test_tts.py -v
"""

import json

import httpx
import pytest

from callbridge.audio.tts import ElevenLabsTTS
from callbridge.errors import SynthesisError


class _BrokenStream(httpx.AsyncByteStream):
    """Yields two chunks, then the connection drops."""

    async def __aiter__(self):
        yield b"\x01\x00" * 320
        yield b"\x02\x00" * 320
        raise httpx.ReadError("connection reset")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def _collect(tts, text="Hello"):
    return [chunk async for chunk in tts.synthesize_stream(text)]


class TestElevenLabsRequest:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(200, content=b"\x00\x00" * 100)

        tts = ElevenLabsTTS("el-key", "voice-123", client=_client(handler))
        await _collect(tts, "Hi, this is Carter.")

        request = seen["request"]
        assert request.method == "POST"
        assert request.url.path == "/v1/text-to-speech/voice-123/stream"
        assert request.url.params["optimize_streaming_latency"] == "4"
        assert request.url.params["output_format"] == "pcm_16000"
        assert request.headers["xi-api-key"] == "el-key"

        body = json.loads(request.content)
        assert body["text"] == "Hi, this is Carter."
        assert body["model_id"] == "eleven_turbo_v2_5"
        assert body["seed"] == 123
        assert body["voice_settings"] == {
            "stability": 0.5,
            "similarity_boost": 0.5,
            "style": 1,
            "use_speaker_boost": True,
        }


class TestElevenLabsStreaming:
    @pytest.mark.asyncio
    async def test_yields_audio_bytes(self):
        audio = b"\x10\x00" * 800

        tts = ElevenLabsTTS("k", "v", client=_client(lambda r: httpx.Response(200, content=audio)))
        assert b"".join(await _collect(tts)) == audio

    @pytest.mark.asyncio
    async def test_non_2xx_raises_synthesis_error(self):
        tts = ElevenLabsTTS("k", "v", client=_client(lambda r: httpx.Response(401, json={"detail": "bad key"})))

        with pytest.raises(SynthesisError) as exc_info:
            await _collect(tts)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_mid_stream_failure_keeps_earlier_chunks(self):
        tts = ElevenLabsTTS("k", "v", client=_client(lambda r: httpx.Response(200, stream=_BrokenStream())))

        received = []
        with pytest.raises(SynthesisError):
            async for chunk in tts.synthesize_stream("Hello"):
                received.append(chunk)

        assert b"".join(received) == b"\x01\x00" * 320 + b"\x02\x00" * 320

    @pytest.mark.asyncio
    async def test_empty_api_key_raises(self):
        with pytest.raises(SynthesisError):
            await _collect(ElevenLabsTTS("", "v"))
