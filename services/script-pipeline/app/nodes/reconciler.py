"""Extraction Reconciler.

Merges the AI line list with the heuristic parser's reading of the same
verbatim text into one authoritative sequence:

1. Order the AI lines by their ``order`` field and report gaps.
2. Run the heuristic extractor over the verbatim text.
3. A strictly longer heuristic sequence wins wholesale (the AI path
   under-extracted); AI lines it does not cover are still carried over.
4. Otherwise keep every AI line and add heuristic lines the AI missed.
5. Sort by position in the verbatim text, then renumber ``L1..LN``.  The
   old-to-new id map lets scene bounds follow their lines.

Discrepancies are returned as issues and logged, never raised.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Optional, Protocol

from ..models import (
    DialogueLine,
    ReconciliationResult,
    Scene,
    normalize_character,
    normalize_text,
    reindex,
)
from ..timing import timed_node
from . import heuristic_parser
from .validation import validate_order, validate_reconciled

log = logging.getLogger(__name__)

# Shorter texts must match exactly; containment is only trusted above this.
MIN_CONTAINMENT_CHARS = 8


class ScriptExtractor(Protocol):
    def extract_lines(self, text: str) -> list[DialogueLine]:
        ...


class HeuristicScriptExtractor:
    """Rule-based line extraction over raw screenplay text."""

    def extract_lines(self, text: str) -> list[DialogueLine]:
        return heuristic_parser.extract_lines(text)


@timed_node("reconciler", "programmatic")
def reconcile(
    ai_lines: Optional[list[DialogueLine]],
    verbatim_text: str,
    heuristic_lines: Optional[list[DialogueLine]] = None,
    heuristic: Optional[ScriptExtractor] = None,
) -> ReconciliationResult:
    """Produce one order-consistent line sequence from both extractions."""
    if heuristic_lines is None:
        heuristic_lines = (heuristic or HeuristicScriptExtractor()).extract_lines(verbatim_text)

    if ai_lines is None:
        log.info("No AI line list; using %d heuristic line(s)", len(heuristic_lines))
        lines = reindex(_sort_by_source([heuristic_lines], verbatim_text))
        return ReconciliationResult(lines=lines, issues=[], strategy="heuristic_only")

    issues: list[str] = []
    ai = sorted(ai_lines, key=lambda l: l.order)
    issues.extend(validate_order(ai))

    empty = [l for l in ai if not l.text.strip()]
    if empty:
        issues.append(f"Dropped {len(empty)} AI line(s) with empty text: "
                      f"{[l.line_id for l in empty][:10]}")
        ai = [l for l in ai if l.text.strip()]

    if len(heuristic_lines) > len(ai):
        issues.append(
            f"Heuristic parser found {len(heuristic_lines)} line(s), AI found "
            f"{len(ai)}; using heuristic sequence"
        )
        base, candidates, strategy = heuristic_lines, ai, "heuristic"
    else:
        base, candidates, strategy = ai, heuristic_lines, "ai"

    # AI lines are only ever dropped on an exact text match.
    loose = strategy == "ai"
    extras = [l for l in candidates if _covering_line(l, base, loose) is None]
    for line in extras:
        source = "AI" if strategy == "heuristic" else "heuristic"
        issues.append(f"Added {source} line missing from base: {line.character}: {line.text[:60]!r}")
    if extras and strategy == "ai":
        strategy = "merged"

    ordered = _sort_by_source([base, extras], verbatim_text)
    lines = reindex(ordered)
    id_map = _map_ai_ids(ai, base, ordered, lines)

    issues.extend(validate_reconciled(lines, verbatim_text, ai, id_map))

    for issue in issues:
        log.warning("Reconciliation: %s", issue)
    log.info("Reconciled %d AI + %d heuristic line(s) into %d (strategy=%s)",
             len(ai), len(heuristic_lines), len(lines), strategy)

    return ReconciliationResult(lines=lines, issues=issues, strategy=strategy, id_map=id_map)


def remap_scenes(scenes: list[Scene], id_map: dict[str, str]) -> list[Scene]:
    """Rewrite scene line bounds from extractor ids to final line ids.

    A bound whose line did not survive reconciliation is dropped.
    """
    remapped = []
    for scene in scenes:
        start = id_map.get(scene.start_line_id) if scene.start_line_id else None
        end = id_map.get(scene.end_line_id) if scene.end_line_id else None
        if (scene.start_line_id and start is None) or (scene.end_line_id and end is None):
            log.warning("Scene %s: dropped line bound(s) with no reconciled line", scene.scene_id)
        remapped.append(replace(scene, start_line_id=start, end_line_id=end))
    return remapped


def _map_ai_ids(
    ai: list[DialogueLine],
    base: list[DialogueLine],
    ordered: list[DialogueLine],
    final: list[DialogueLine],
) -> dict[str, str]:
    new_ids = {id(old): new.line_id for old, new in zip(ordered, final)}
    claimed: set[int] = set()
    id_map: dict[str, str] = {}
    for line in ai:
        target = line if id(line) in new_ids else _covering_line(line, base, False, claimed)
        if target is None or line.line_id in id_map:
            continue
        claimed.add(id(target))
        id_map[line.line_id] = new_ids[id(target)]
    return id_map


def _covering_line(
    line: DialogueLine,
    pool: list[DialogueLine],
    loose: bool = True,
    claimed: Optional[set[int]] = None,
) -> Optional[DialogueLine]:
    """The line in *pool* that already holds this utterance, if any.

    Exact normalized text always matches.  For the same speaker, a text of
    reasonable length contained in the other also matches, since one source
    may have merged a continuation the other kept apart.  Lines in *claimed*
    are skipped so repeated texts pair up in order.
    """
    key = normalize_text(line.text)
    speaker = normalize_character(line.character)
    for other in pool:
        if claimed and id(other) in claimed:
            continue
        other_key = normalize_text(other.text)
        if key == other_key:
            return other
        if not loose or normalize_character(other.character) != speaker:
            continue
        shorter, longer = sorted((key, other_key), key=len)
        if len(shorter) >= MIN_CONTAINMENT_CHARS and shorter in longer:
            return other
    return None


def _sort_by_source(
    sources: list[list[DialogueLine]], text: str
) -> list[DialogueLine]:
    """Stable sort of all lines by first-match offset in *text*.

    Each source is located with its own moving cursor so repeated texts
    ("Yes.") resolve to successive occurrences.  Earlier sources win ties.
    """
    keyed: list[tuple[int, DialogueLine]] = []
    for lines in sources:
        keyed.extend(zip(_locate(lines, text), lines))
    keyed.sort(key=lambda pair: pair[0])
    return [line for _, line in keyed]


def _locate(lines: list[DialogueLine], text: str) -> list[int]:
    offsets: list[int] = []
    cursor = 0
    previous = 0
    for line in lines:
        pos, length = _find(text, line.text, cursor)
        if pos < 0:
            # Not in the source at all: keep it right after its predecessor.
            pos = previous
        else:
            cursor = pos + length
        offsets.append(pos)
        previous = pos
    return offsets


def _find(text: str, needle: str, cursor: int) -> tuple[int, int]:
    """Locate *needle* at or after *cursor*, then anywhere.

    Falls back to a whitespace- and case-insensitive match, since verbatim
    text keeps line breaks that extracted lines join with spaces.
    """
    needle = needle.strip()
    if not needle:
        return -1, 0

    pos = text.find(needle, cursor)
    if pos < 0:
        pos = text.find(needle)
    if pos >= 0:
        return pos, len(needle)

    pattern = re.compile(r"\s+".join(re.escape(w) for w in needle.split()), re.IGNORECASE)
    match = pattern.search(text, cursor) or pattern.search(text)
    if match:
        return match.start(), match.end() - match.start()
    return -1, 0
