"""Centralized constants for the callbridge voice session service.

All magic numbers and timeout values should be defined here for easy maintenance.
"""

# Call transport audio (narrow-band telephony PCM)
CALL_SAMPLE_RATE: int = 8_000
SAMPLE_WIDTH_BYTES: int = 2  # 16-bit signed little-endian
CALL_FRAME_BYTES: int = 320  # 160 samples = 20ms at 8kHz
CALL_CONTENT_TYPE: str = "audio/l16;rate=8000"

# Synthesis source audio
SYNTHESIS_SAMPLE_RATE: int = 16_000
DECIMATION_RATIO: int = SYNTHESIS_SAMPLE_RATE // CALL_SAMPLE_RATE

# Voice-activity segmentation
ENERGY_THRESHOLD: float = 300.0  # mean squared sample value
SILENCE_FRAME_LIMIT: int = 25  # 25 × 20ms = 500ms of silence ends an utterance
MIN_TRANSCRIPT_CHARS: int = 2

# Transcription stream
DEEPGRAM_MODEL: str = "nova-2-voicemail"
TRANSCRIBER_KEEPALIVE_INTERVAL: float = 10.0
TRANSCRIBER_SEND_QUEUE_MAX: int = 500  # 10s of 20ms frames buffered toward Deepgram
TRANSCRIBER_CLOSE_TIMEOUT: float = 2.0

# Synthesis
ELEVENLABS_MODEL: str = "eleven_turbo_v2_5"
ELEVENLABS_OUTPUT_FORMAT: str = "pcm_16000"
ELEVENLABS_STREAMING_LATENCY: int = 4
ELEVENLABS_SEED: int = 123
TTS_REQUEST_TIMEOUT: float = 30.0

# Completion
DEFAULT_COMPLETION_MODEL: str = "claude-haiku-4-5-20251001"
COMPLETION_MAX_TOKENS: int = 256
SYSTEM_PROMPT: str = (
    "Your name is Carter. You are on a phone call, so your responses MUST be brief. "
    "Make sure to introduce yourself. Your response will be spoken to the other person "
    "on the call, so don't include any actions, just speech."
)

# Session lifecycle (seconds)
TURN_SHUTDOWN_GRACE_S: float = 5.0  # In-flight turn allowance before it is abandoned

# Recording
DEFAULT_RECORDINGS_DIR: str = "recordings"
RECORDING_FILENAME_TEMPLATE: str = "full_conversation_{session_id}.wav"

# Environment keys
REQUIRED_ENV_KEYS: tuple[str, ...] = (
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
    "ANTHROPIC_API_KEY",
    "DEEPGRAM_API_KEY",
    "HOST",
    "PORT",
)
