"""FastAPI app — telephony webhooks + the per-call audio WebSocket.

Data flow:
  1. Provider calls ``/webhooks/answer`` → NCCO tells it to connect the call
     to ``ws://HOST:PORT/socket`` as 8 kHz linear PCM.
  2. ``/socket`` accepts the stream and hands it to a ``CallSession``.
  3. Call progress callbacks land on ``/webhooks/events`` and are logged.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse
from langchain_anthropic import ChatAnthropic

from callbridge import __version__
from callbridge.audio.stt import DeepgramLiveTranscriber
from callbridge.audio.tts import ElevenLabsTTS
from callbridge.constants import CALL_CONTENT_TYPE, COMPLETION_MAX_TOKENS
from callbridge.errors import ConfigError
from callbridge.session import CallSession
from callbridge.settings import Settings
from callbridge.telemetry import init_telemetry

load_dotenv()
logger = logging.getLogger(__name__)


def build_chat_model(settings: Settings) -> ChatAnthropic:
    return ChatAnthropic(
        model=settings.completion_model,
        api_key=settings.anthropic_api_key,
        max_tokens=COMPLETION_MAX_TOKENS,
    )


def build_ncco(settings: Settings) -> list[dict]:
    """Call-control object that routes the answered call into ``/socket``."""
    return [
        {
            "action": "connect",
            "from": settings.caller_name,
            "endpoint": [
                {
                    "type": "websocket",
                    "uri": settings.socket_uri,
                    "content-type": CALL_CONTENT_TYPE,
                }
            ],
        }
    ]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Load settings and shared clients once per process."""
    init_telemetry()

    settings = getattr(app.state, "settings", None) or Settings.from_env()
    app.state.settings = settings
    if getattr(app.state, "chat_model", None) is None:
        app.state.chat_model = build_chat_model(settings)
    if getattr(app.state, "tts", None) is None:
        app.state.tts = ElevenLabsTTS(settings.elevenlabs_api_key, settings.elevenlabs_voice_id)
    logger.info("Call bridge ready — calls connect to %s", settings.socket_uri)

    yield


def create_app(
    settings: Settings | None = None,
    *,
    chat_model=None,
    tts=None,
    transcriber_factory=None,
) -> FastAPI:
    """Build the app. Collaborators can be injected (tests, alternate providers)."""
    app = FastAPI(title="Callbridge", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.chat_model = chat_model
    app.state.tts = tts
    app.state.transcriber_factory = transcriber_factory or (
        lambda s: DeepgramLiveTranscriber(s.deepgram_api_key)
    )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/webhooks/answer")
    async def answer_call(request: Request) -> list[dict]:
        logger.info("[Webhook] Answering call: %s", dict(request.query_params))
        return build_ncco(request.app.state.settings)

    @app.post("/webhooks/events")
    async def call_events(request: Request) -> PlainTextResponse:
        try:
            body = await request.json()
        except ValueError:
            body = (await request.body()).decode(errors="replace")
        logger.info("[Webhook] Call event: %s", body)
        return PlainTextResponse("OK")

    @app.websocket("/socket")
    async def call_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        state = websocket.app.state
        session = CallSession(
            websocket,
            state.settings,
            transcriber=state.transcriber_factory(state.settings),
            chat_model=state.chat_model,
            tts=state.tts,
        )
        await session.run()

    return app


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
