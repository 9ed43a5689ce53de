"""Heuristic Script Parser.

Deterministic, rule-based reading of screenplay-formatted text: character
cues are uppercase lines followed by dialogue (optionally with a
parenthetical in between), dialogue is the run of lines under a cue.  No
network calls.

Two entry points:

- ``identify_characters`` returns the sorted character set, biased toward
  omission: isolated uppercase lines early in a document are titles, not
  characters.
- ``extract_lines`` returns the full ``DialogueLine`` sequence.  It stops a
  dialogue block at the first sign of non-dialogue rather than guessing.
"""

from __future__ import annotations

import logging
import re

from ..models import DialogueLine, normalize_character
from ..timing import timed_node

log = logging.getLogger(__name__)

SCENE_HEADING_PREFIXES = (
    "INT.", "EXT.", "FADE IN:", "FADE OUT:", "CUT TO:", "DISSOLVE TO:",
    "SCENE", "ACTION", "SOUND", "MUSIC", "TITLE CARD:", "SUPER:",
    "MONTAGE", "SERIES OF SHOTS", "END OF", "BACK TO:", "LATER",
    "CONTINUOUS", "MOMENTS LATER", "THE END", "BLACKOUT",
)

COMMON_PARENTHETICALS = (
    "(O.S.)", "(V.O.)", "(CONT'D)", "(CONTINUED)", "(OFF SCREEN)",
    "(VOICE OVER)", "(BEAT)", "(PAUSE)", "(WHISPERS)", "(SHOUTS)",
    "(CRYING)", "(LAUGHING)", "(SIGHS)", "(TO HIMSELF)", "(TO HERSELF)",
)

MAX_NAME_LENGTH = 50
TITLE_WINDOW = 10          # lines from the top where isolated caps read as a title
DIALOGUE_LOOKAHEAD = 5     # non-blank lines searched for dialogue near a title
CUE_LOOKAHEAD = 3          # non-blank lines inspected after a candidate cue
ISOLATION_RADIUS = 3       # raw lines searched for a neighbouring cue

# Prefixes match as whole tokens so that names like MUSICIAN are not headings.
_SCENE_HEADING_RE = re.compile(
    r"(?<![^\W\d_])(?:"
    + "|".join(re.escape(p) for p in SCENE_HEADING_PREFIXES)
    + r")(?![^\W\d_])"
)

_ACTION_VERBS = (
    "walks", "runs", "sits", "stands", "enters", "exits", "leaves", "looks",
    "turns", "moves", "crosses", "opens", "closes", "picks", "grabs", "takes",
    "puts", "pauses", "smiles", "nods", "laughs", "sighs", "stares", "watches",
    "reaches", "steps", "rises", "kneels", "leans", "hands", "pulls", "pushes",
    "hurries", "storms", "slams", "glances", "shrugs", "freezes", "falls",
    "jumps", "lies", "waits", "gestures", "points", "starts", "stops",
)
_VERBS = "|".join(_ACTION_VERBS)

ACTION_PATTERNS = (
    # Determiner-initial description.
    re.compile(r"^(?:The|A|An|This|That|These|Those)\s"),
    # Camera and narration conventions.
    re.compile(r"^We\s+(?:see|hear|follow|move|pan|watch)\b"),
    re.compile(r"^(?:Meanwhile|Suddenly|Later|Outside|Inside)\b"),
    # Pronoun or name followed by a movement verb: "Sarah walks to the window."
    re.compile(rf"^(?:He|She|They|It)\s+(?:{_VERBS})\b"),
    re.compile(rf"^[A-Z][\w'’.-]*(?:\s+[A-Z][\w'’.-]*)?\s+(?:{_VERBS})\b"),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@timed_node("identify_characters", "programmatic")
def identify_characters(text: str) -> list[str]:
    """Return the sorted, deduplicated set of character names in *text*.

    Empty or cue-less text yields an empty list, never an error.
    """
    if not text or not text.strip():
        return []

    lines = _split(text)
    characters: set[str] = set()

    for i, line in enumerate(lines):
        if not line or not _is_candidate_name(line):
            continue
        if is_scene_heading(line):
            continue
        if _is_likely_title(line, i, lines):
            continue
        if _is_followed_by_dialogue(_next_non_empty(lines, i, CUE_LOOKAHEAD)):
            name = clean_character_name(line)
            if name:
                characters.add(name)

    result = sorted(characters)
    log.info("Identified %d character(s): %s", len(result), result)
    return result


@timed_node("heuristic_parser", "programmatic")
def extract_lines(text: str) -> list[DialogueLine]:
    """Extract the ordered dialogue line sequence from screenplay text.

    On each accepted character cue, the contiguous run of non-blank lines
    below it is consumed as that character's dialogue until another cue, a
    scene heading, an uppercase line or an action line.  Standalone
    parentheticals inside the run are stage directions and are dropped;
    consumed lines are joined with single spaces.
    """
    if not text or not text.strip():
        return []

    lines = _split(text)
    result: list[DialogueLine] = []
    i = 0

    while i < len(lines):
        if not lines[i] or not _is_cue(lines, i):
            i += 1
            continue

        character = clean_character_name(lines[i])
        parts, i = _consume_dialogue(lines, i + 1)
        if character and parts:
            order = len(result) + 1
            result.append(DialogueLine(
                line_id=f"L{order}",
                order=order,
                character=character,
                text=" ".join(parts),
            ))

    log.info("Heuristic parser extracted %d line(s)", len(result))
    return result


def characters_from_lines(lines: list[DialogueLine]) -> list[str]:
    """Sorted, deduplicated uppercase cast of an existing line list."""
    return sorted({
        normalize_character(line.character)
        for line in lines
        if line.character and line.character.strip()
    })


def clean_character_name(name: str) -> str:
    """Strip the trailing parenthetical and punctuation, collapse spaces."""
    return normalize_character(name)


def is_scene_heading(line: str) -> bool:
    return bool(_SCENE_HEADING_RE.search(line))


def is_action_line(line: str) -> bool:
    return any(p.match(line) for p in ACTION_PATTERNS)


def looks_like_dialogue(line: str) -> bool:
    """Starts with a capital, has lowercase, is not a caps line or heading."""
    if not line:
        return False
    if _is_all_uppercase(line):
        return False
    if is_scene_heading(line):
        return False
    return line[0].isupper() and any(ch.islower() for ch in line)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _split(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines()]


def _is_all_uppercase(line: str) -> bool:
    """True when the line has letters and none of them are lowercase."""
    letters = [ch for ch in line if ch.isalpha()]
    return bool(letters) and not any(ch.islower() for ch in letters)


def _is_candidate_name(line: str) -> bool:
    """Uppercase letters only once spaces and punctuation are ignored."""
    if len(line) > MAX_NAME_LENGTH or _is_parenthetical(line):
        return False
    if any(ch.isdigit() for ch in line):
        return False
    significant = [ch for ch in line if ch.isalnum()]
    return bool(significant) and all(ch.isupper() for ch in significant)


def _is_parenthetical(line: str) -> bool:
    return line.startswith("(") and line.endswith(")")


def _is_recognised_parenthetical(line: str) -> bool:
    upper = line.upper()
    return any(p[1:-1] in upper for p in COMMON_PARENTHETICALS)


def _is_quoted(line: str) -> bool:
    return len(line) > 1 and (
        (line.startswith('"') and line.endswith('"'))
        or (line.startswith("'") and line.endswith("'"))
    )


def _next_non_empty(lines: list[str], index: int, count: int) -> list[str]:
    found: list[str] = []
    j = index + 1
    while len(found) < count and j < len(lines):
        if lines[j]:
            found.append(lines[j])
        j += 1
    return found


def _surrounding_non_empty(lines: list[str], index: int, radius: int) -> list[str]:
    before = lines[max(0, index - radius):index]
    after = lines[index + 1:index + radius + 1]
    return [l for l in before + after if l]


def _is_early_title(line: str, index: int, lines: list[str]) -> bool:
    if index >= TITLE_WINDOW:
        return False
    nearby = _next_non_empty(lines, index, DIALOGUE_LOOKAHEAD)
    return not any(looks_like_dialogue(l) for l in nearby)


def _is_likely_title(line: str, index: int, lines: list[str]) -> bool:
    if _is_early_title(line, index, lines):
        return True
    if _is_quoted(line):
        return True
    # A lone uppercase line with no other cue nearby is a title, not a cast member.
    neighbours = _surrounding_non_empty(lines, index, ISOLATION_RADIUS)
    return not any(
        _is_candidate_name(l) and not is_scene_heading(l) for l in neighbours
    )


def _is_followed_by_dialogue(following: list[str]) -> bool:
    if not following:
        return False
    first = following[0]
    if _is_parenthetical(first):
        if _is_recognised_parenthetical(first):
            return True
        return len(following) > 1 and looks_like_dialogue(following[1])
    return looks_like_dialogue(first)


def _is_cue(lines: list[str], index: int) -> bool:
    """Character cue test used by line extraction.

    Same rules as ``identify_characters`` except the isolation test: a
    single-speaker passage is still dialogue.
    """
    line = lines[index]
    if not _is_candidate_name(line) or is_scene_heading(line):
        return False
    if _is_quoted(line) or _is_early_title(line, index, lines):
        return False
    return _is_followed_by_dialogue(_next_non_empty(lines, index, CUE_LOOKAHEAD))


def _consume_dialogue(lines: list[str], start: int) -> tuple[list[str], int]:
    """Collect the dialogue block starting at *start*.

    Returns the consumed text lines and the index where scanning resumes.
    """
    j = start
    # Blank lines between a cue (or its parenthetical) and the speech are layout.
    while j < len(lines) and not lines[j]:
        j += 1

    parts: list[str] = []
    while j < len(lines):
        line = lines[j]
        if not line:
            break
        if _is_parenthetical(line):
            j += 1
            continue
        if _is_cue(lines, j) or is_scene_heading(line):
            break
        # The first line under a cue is speech even when it reads like action.
        if parts and (_is_candidate_name(line) or is_action_line(line)):
            break
        parts.append(line)
        j += 1

    return parts, j
