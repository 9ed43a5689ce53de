"""Validation checks over line sequences, transcripts and cue sheets.

Every check returns human-readable issues and logs them as warnings; none
of them raise or drop data.
"""

from __future__ import annotations

import logging
import re
from collections import Counter

from ..models import AlignmentResult, DialogueLine

log = logging.getLogger(__name__)


def validate_order(lines: list[DialogueLine]) -> list[str]:
    """Report gaps, duplicates and a non-1 start in the ``order`` field."""
    issues: list[str] = []
    if not lines:
        return issues

    orders = [l.order for l in lines]
    duplicates = sorted(o for o, n in Counter(orders).items() if n > 1)
    if duplicates:
        issues.append(f"Duplicate order values: {duplicates[:10]}")

    distinct = sorted(set(orders))
    if distinct[0] != 1:
        issues.append(f"Order starts at {distinct[0]}, expected 1")

    gaps = [
        (a, b) for a, b in zip(distinct, distinct[1:]) if b - a > 1
    ]
    if gaps:
        sample = [f"{a}->{b}" for a, b in gaps[:10]]
        issues.append(f"Gaps in order sequence: {sample}")

    for issue in issues:
        log.warning("Validation: %s", issue)
    return issues


def validate_reconciled(
    lines: list[DialogueLine],
    verbatim_text: str,
    ai_lines: list[DialogueLine],
    id_map: dict[str, str],
) -> list[str]:
    """Check the reconciled sequence against its inputs.

    Every final line's text must occur in the verbatim text, and every
    non-empty AI line must have a final counterpart.
    """
    issues: list[str] = []
    source = _normalise(verbatim_text)

    missing = [l.line_id for l in lines if _normalise(l.text) not in source]
    if missing:
        issues.append(f"Line text not found in source text: {missing[:10]}")

    lost = [l.line_id for l in ai_lines if l.text.strip() and l.line_id not in id_map]
    if lost:
        issues.append(f"AI line(s) without a reconciled counterpart: {lost[:10]}")

    for issue in issues:
        log.warning("Validation: %s", issue)
    return issues


def check_alignment(result: AlignmentResult, transcript: str) -> list[str]:
    """Check that the cue sheet covers *transcript* with non-decreasing spans."""
    issues: list[str] = []

    if not result.words:
        issues.append("Cue sheet has no word timings")
    else:
        reconstructed = "".join(w.text for w in result.words)
        if _squash(reconstructed) != _squash(transcript):
            issues.append("Word timings do not reconstruct the submitted transcript")

        backwards = [
            i for i, (a, b) in enumerate(zip(result.words, result.words[1:]), start=1)
            if b.start < a.start
        ]
        if backwards:
            issues.append(f"Word start times decrease at positions {backwards[:10]}")

    for issue in issues:
        log.warning("Alignment check: %s", issue)
    return issues


def _normalise(text: str) -> str:
    """Collapse whitespace, lowercase for comparison."""
    return re.sub(r"\s+", " ", text).strip().lower()


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text)
