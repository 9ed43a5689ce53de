"""Environment-driven settings for the script pipeline service."""

import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Document-understanding service (OpenAI chat completions with file input).
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gpt-4o-mini")
EXTRACTION_MAX_TOKENS = int(os.getenv("EXTRACTION_MAX_TOKENS", "8192"))

# Speech synthesis and forced alignment (ElevenLabs).
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_BASE_URL = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io/v1")
TTS_MODEL_ID = os.getenv("TTS_MODEL_ID", "eleven_v3")
TTS_STABILITY = float(os.getenv("TTS_STABILITY", "0.5"))
TTS_TEXT_NORMALIZATION = os.getenv("TTS_TEXT_NORMALIZATION", "auto")
VOICE_ID_FIRST = os.getenv("VOICE_ID_FIRST", "Cz0K1kOv9tD8l0b5Qu53")
VOICE_ID_SECOND = os.getenv("VOICE_ID_SECOND", "MClEFoImJXBTgLwdLI5n")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "300"))

# Upload ceilings, enforced before any extraction call for non-text formats.
MAX_UPLOAD_MB = float(os.getenv("MAX_UPLOAD_MB", "5"))
MAX_PDF_PAGES = int(os.getenv("MAX_PDF_PAGES", "10"))

AUDIO_DIR = os.getenv("AUDIO_DIR", "/output/audio")
PROJECTS_DIR = os.getenv("PROJECTS_DIR", "/data/projects")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
