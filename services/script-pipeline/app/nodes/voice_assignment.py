"""Voice Assignment.

Maps each counter-read character to one of two synthetic voices: the first
character to appear gets the first voice, the second the second voice, and
from there on voices alternate by appearance index (even -> first, odd ->
second).  The mapping depends only on appearance order, so the same lines
always yield the same mapping.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .. import config
from ..errors import LineValidationError
from ..models import DialogueLine, VoiceMapping, normalize_character, unique_characters
from ..timing import timed_node

log = logging.getLogger(__name__)

DEFAULT_VOICE_POOL = (config.VOICE_ID_FIRST, config.VOICE_ID_SECOND)


def validate_lines(lines: list[DialogueLine]) -> None:
    """Reject structurally unusable line lists before any synthesis."""
    if not lines:
        raise LineValidationError("line list is empty", kind="empty_lines")

    bad = [
        i for i, l in enumerate(lines, start=1)
        if not l.line_id.strip() or not l.character.strip() or not l.text.strip()
    ]
    if bad:
        raise LineValidationError(
            f"{len(bad)} line(s) missing lineId, character or text at positions {bad[:10]}",
            kind="malformed_lines",
            user_message="Some dialogue lines are missing a character or text. "
                         "Please review the script before generating audio.",
        )


@timed_node("voice_assignment", "programmatic")
def assign_voices(
    lines: list[DialogueLine],
    voice_pool: Sequence[str] = DEFAULT_VOICE_POOL,
) -> VoiceMapping:
    validate_lines(lines)
    if not voice_pool:
        raise ValueError("voice_pool must not be empty")

    ordered = sorted(lines, key=lambda l: l.order)
    mapping: VoiceMapping = {
        name: voice_pool[i % len(voice_pool)]
        for i, name in enumerate(unique_characters(ordered))
    }
    log.info("Assigned voices to %d character(s): %s", len(mapping), mapping)
    return mapping


def voiced_lines(
    lines: list[DialogueLine],
    own_character: str | None = None,
    excluded: Iterable[str] = (),
) -> list[DialogueLine]:
    """Lines the system speaks: all but the user's own and opted-out roles."""
    skip = {normalize_character(n) for n in excluded}
    if own_character:
        skip.add(normalize_character(own_character))
    return [l for l in lines if normalize_character(l.character) not in skip]
