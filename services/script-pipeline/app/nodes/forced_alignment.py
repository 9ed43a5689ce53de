"""Forced Alignment Engine.

Aligns stored dialogue audio against the transcript it was synthesized
from.  The transcript is rebuilt from the same lines, joined in ``order``
with single spaces, so it matches the synthesis input exactly.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import aiofiles

from ..errors import AlignmentError
from ..models import AlignmentResult, DialogueLine, build_transcript
from ..storage import AudioStorage
from ..timing import timed_node
from .elevenlabs_client import AlignmentService
from .validation import check_alignment

log = logging.getLogger(__name__)


@timed_node("forced_alignment", "external")
async def generate_cue_sheet(
    audio_url: str,
    lines: list[DialogueLine],
    aligner: AlignmentService,
    storage: AudioStorage,
) -> AlignmentResult:
    if not lines:
        raise AlignmentError("no lines to align", kind="empty_transcript")
    transcript = build_transcript(lines)
    if not transcript.strip():
        raise AlignmentError("transcript is empty", kind="empty_transcript")

    audio = await storage.load(audio_url)
    if not audio:
        raise AlignmentError(f"stored audio {audio_url} is empty", kind="empty_audio")

    fd, tmp_name = tempfile.mkstemp(suffix=".mp3")
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(audio)
        payload = await aligner.align(tmp_path, transcript)
    finally:
        tmp_path.unlink(missing_ok=True)

    result = parse_alignment(payload)
    check_alignment(result, transcript)

    log.info("Aligned %d word(s), %d character span(s), loss=%.4f",
             len(result.words), len(result.characters), result.loss)
    return result


def parse_alignment(payload) -> AlignmentResult:
    """Validate the alignment response shape and convert it."""
    if not isinstance(payload, dict):
        raise AlignmentError("alignment response is not an object", kind="bad_response")
    missing = [k for k in ("characters", "words") if not isinstance(payload.get(k), list)]
    if missing:
        raise AlignmentError(f"alignment response lacks {missing}", kind="bad_response")
    try:
        return AlignmentResult.from_dict(payload)
    except (TypeError, ValueError, AttributeError) as e:
        raise AlignmentError(f"malformed timing entries: {e}", kind="bad_response") from e
