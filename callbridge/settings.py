"""Runtime settings read from the process environment.

``load_dotenv()`` runs in ``main.py`` before ``Settings.from_env()`` so a local
``.env`` file can supply any of the keys below.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from callbridge.constants import (
    DEFAULT_COMPLETION_MODEL,
    DEFAULT_RECORDINGS_DIR,
    ENERGY_THRESHOLD,
    REQUIRED_ENV_KEYS,
    SILENCE_FRAME_LIMIT,
)
from callbridge.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    elevenlabs_api_key: str
    elevenlabs_voice_id: str
    anthropic_api_key: str
    deepgram_api_key: str
    host: str
    port: int
    completion_model: str = DEFAULT_COMPLETION_MODEL
    recordings_dir: str = DEFAULT_RECORDINGS_DIR
    energy_threshold: float = ENERGY_THRESHOLD
    silence_frame_limit: int = SILENCE_FRAME_LIMIT
    caller_name: str = "VoiceAgent"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from *environ* (defaults to ``os.environ``).

        Raises ``ConfigError`` naming every missing required key at once, so
        a misconfigured deployment fails with one complete message.
        """
        env = os.environ if environ is None else environ

        missing = [key for key in REQUIRED_ENV_KEYS if not env.get(key)]
        if missing:
            for key in missing:
                logger.error("[Config] Missing environment variable: %s", key)
            raise ConfigError(missing)

        try:
            port = int(env["PORT"])
            energy_threshold = float(env.get("ENERGY_THRESHOLD", ENERGY_THRESHOLD))
            silence_frame_limit = int(env.get("SILENCE_FRAME_LIMIT", SILENCE_FRAME_LIMIT))
        except ValueError as exc:
            raise ConfigError([], detail=str(exc)) from exc

        return cls(
            elevenlabs_api_key=env["ELEVENLABS_API_KEY"],
            elevenlabs_voice_id=env["ELEVENLABS_VOICE_ID"],
            anthropic_api_key=env["ANTHROPIC_API_KEY"],
            deepgram_api_key=env["DEEPGRAM_API_KEY"],
            host=env["HOST"],
            port=port,
            completion_model=env.get("COMPLETION_MODEL") or DEFAULT_COMPLETION_MODEL,
            recordings_dir=env.get("RECORDINGS_DIR") or DEFAULT_RECORDINGS_DIR,
            energy_threshold=energy_threshold,
            silence_frame_limit=silence_frame_limit,
            caller_name=env.get("CALLER_NAME") or "VoiceAgent",
        )

    @property
    def socket_uri(self) -> str:
        """WebSocket URI the telephony provider should connect calls to."""
        return f"ws://{self.host}:{self.port}/socket"
