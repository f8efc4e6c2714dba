"""ElevenLabs streaming TTS client (16 kHz raw PCM output)."""

from __future__ import annotations

import logging
from typing import AsyncGenerator

import httpx

from callbridge.constants import (
    ELEVENLABS_MODEL,
    ELEVENLABS_OUTPUT_FORMAT,
    ELEVENLABS_SEED,
    ELEVENLABS_STREAMING_LATENCY,
    TTS_REQUEST_TIMEOUT,
)
from callbridge.errors import SynthesisError

logger = logging.getLogger(__name__)


class ElevenLabsTTS:
    """Streams text to ElevenLabs and yields raw PCM-16 audio chunks.

    Parameters
    ----------
    api_key : str
        ElevenLabs API key (from ELEVENLABS_API_KEY env var).
    voice_id : str
        ElevenLabs voice ID to use for synthesis.
    client : httpx.AsyncClient, optional
        Shared client; one is created per request when omitted.
    """

    BASE_URL = "https://api.elevenlabs.io/v1/text-to-speech"

    def __init__(
        self,
        api_key: str,
        voice_id: str,
        *,
        model_id: str = ELEVENLABS_MODEL,
        client: httpx.AsyncClient | None = None,
        timeout: float = TTS_REQUEST_TIMEOUT,
    ) -> None:
        self._api_key = api_key
        self._voice_id = voice_id
        self._model_id = model_id
        self._client = client
        self._timeout = timeout

    @property
    def url(self) -> str:
        return (
            f"{self.BASE_URL}/{self._voice_id}/stream"
            f"?optimize_streaming_latency={ELEVENLABS_STREAMING_LATENCY}"
            f"&output_format={ELEVENLABS_OUTPUT_FORMAT}"
        )

    def build_payload(self, text: str) -> dict:
        return {
            "text": text,
            "model_id": self._model_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.5,
                "style": 1,
                "use_speaker_boost": True,
            },
            "seed": ELEVENLABS_SEED,
        }

    async def synthesize_stream(self, text: str) -> AsyncGenerator[bytes, None]:
        """Synthesize *text* and yield PCM-16 chunks as they arrive.

        Raises ``SynthesisError`` on a non-2xx response or a broken stream.
        Chunks yielded before a mid-stream failure remain valid.
        """
        if not self._api_key:
            raise SynthesisError("ELEVENLABS_API_KEY is empty — cannot synthesize audio.")

        headers = {
            "xi-api-key": self._api_key,
            "Content-Type": "application/json",
        }
        logger.info("[TTS] Synthesizing: %.80s...", text)

        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            async with client.stream("POST", self.url, json=self.build_payload(text), headers=headers) as response:
                if not response.is_success:
                    body = await response.aread()
                    logger.error("[TTS] ElevenLabs returned %d: %s", response.status_code, body[:200])
                    raise SynthesisError(
                        f"ElevenLabs returned status {response.status_code}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as exc:
            logger.error("[TTS] ElevenLabs stream error: %s", exc)
            raise SynthesisError(f"ElevenLabs stream error: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()
