"""Dialogue Audio Synthesizer.

Renders the whole line sequence in one multi-speaker request so the
service controls inter-line timing, then stores the audio under a name
unique to the project and generation time.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Sequence

from .. import config
from ..errors import StorageError
from ..models import DialogueLine, SynthesisResult, VoiceMapping, normalize_character
from ..storage import AudioStorage
from ..timing import timed_node
from .elevenlabs_client import SpeechSynthesisService
from .voice_assignment import DEFAULT_VOICE_POOL, assign_voices

log = logging.getLogger(__name__)

MAX_NAME_ATTEMPTS = 5


def build_dialogue_request(
    lines: list[DialogueLine],
    mapping: VoiceMapping,
    fallback_voice: str = config.VOICE_ID_FIRST,
) -> dict:
    """Request body for the text-to-dialogue endpoint, one input per line."""
    ordered = sorted(lines, key=lambda l: l.order)
    return {
        "inputs": [
            {
                "text": line.text,
                "voiceId": mapping.get(normalize_character(line.character), fallback_voice),
            }
            for line in ordered
        ],
        "settings": {"stability": config.TTS_STABILITY},
        "pronunciationDictionaryLocators": [],
        "applyTextNormalization": config.TTS_TEXT_NORMALIZATION,
        "modelId": config.TTS_MODEL_ID,
    }


def audio_filename(project_id: str, timestamp_ms: int) -> str:
    return f"project-{project_id}-{timestamp_ms}.mp3"


@timed_node("dialogue_synthesizer", "external")
async def synthesize_dialogue(
    project_id: str,
    lines: list[DialogueLine],
    tts: SpeechSynthesisService,
    storage: AudioStorage,
    voice_pool: Sequence[str] = DEFAULT_VOICE_POOL,
    clock: Callable[[], float] = time.time,
) -> SynthesisResult:
    """Synthesize *lines* and store the audio; returns its URL and mapping.

    Raises ``LineValidationError`` before any network call on malformed
    input, ``SynthesisError`` or ``StorageError`` afterwards.
    """
    mapping = assign_voices(lines, voice_pool)
    payload = build_dialogue_request(lines, mapping, voice_pool[0])

    audio = await tts.text_to_dialogue(payload)

    timestamp_ms = int(clock() * 1000)
    for attempt in range(MAX_NAME_ATTEMPTS):
        name = audio_filename(project_id, timestamp_ms + attempt)
        try:
            url = await storage.save(name, audio)
            break
        except StorageError as e:
            if e.kind != "exists" or attempt == MAX_NAME_ATTEMPTS - 1:
                raise
            log.warning("Audio name %s taken, trying the next timestamp", name)

    line_ids = [l.line_id for l in sorted(lines, key=lambda l: l.order)]
    log.info("Synthesized %d line(s) for project %s -> %s", len(lines), project_id, url)
    return SynthesisResult(audio_url=url, voice_mapping=mapping, line_ids=line_ids)
