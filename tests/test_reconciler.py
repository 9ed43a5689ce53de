"""Tests for merging AI and heuristic line sequences."""

from app.models import DialogueLine, Scene, normalize_text
from app.nodes.reconciler import HeuristicScriptExtractor, reconcile, remap_scenes
from app.nodes.validation import validate_order, validate_reconciled

from conftest import make_lines


# Heuristic parser misses MARY's inline cue, finds both JOHN lines.
INLINE_CUE = """INT. KITCHEN - NIGHT

JOHN
Where were you?

Mary: Out walking.

JOHN
All night?
"""


def _line(line_id, order, character, text):
    return DialogueLine(line_id=line_id, order=order, character=character, text=text)


def _assert_contiguous(lines):
    assert [l.order for l in lines] == list(range(1, len(lines) + 1))
    assert [l.line_id for l in lines] == [f"L{i}" for i in range(1, len(lines) + 1)]


def test_heuristic_extractor_strategy():
    lines = HeuristicScriptExtractor().extract_lines(INLINE_CUE)
    assert [l.text for l in lines] == ["Where were you?", "All night?"]


def test_ai_complete_keeps_ai_sequence():
    ai = make_lines(("JOHN", "Where were you?"), ("MARY", "Out walking."), ("JOHN", "All night?"))
    result = reconcile(ai, INLINE_CUE)
    assert result.strategy == "ai"
    assert [l.text for l in result.lines] == ["Where were you?", "Out walking.", "All night?"]
    _assert_contiguous(result.lines)


def test_heuristic_line_missing_from_ai_is_merged_in_source_order():
    # Equal lengths: AI is the base, the heuristic contributes "All night?".
    ai = make_lines(("JOHN", "Where were you?"), ("MARY", "Out walking."))
    result = reconcile(ai, INLINE_CUE)
    assert result.strategy == "merged"
    assert [l.text for l in result.lines] == ["Where were you?", "Out walking.", "All night?"]
    _assert_contiguous(result.lines)
    assert any("All night?" in issue for issue in result.issues)


def test_longer_heuristic_wins_but_keeps_ai_lines():
    ai = [_line("L1", 1, "MARY", "Out walking.")]
    result = reconcile(ai, INLINE_CUE)
    assert result.strategy == "heuristic"
    assert [l.text for l in result.lines] == ["Where were you?", "Out walking.", "All night?"]
    _assert_contiguous(result.lines)


def test_no_ai_line_is_lost():
    ai = [
        _line("L1", 1, "JOHN", "Where were you?"),
        _line("L7", 7, "MARY", "Out walking."),
        _line("L3", 3, "NARRATOR", "Text that is nowhere in the source."),
    ]
    result = reconcile(ai, INLINE_CUE)
    final = {normalize_text(l.text) for l in result.lines}
    assert all(normalize_text(l.text) in final for l in ai)
    _assert_contiguous(result.lines)


def test_order_gaps_reported_not_dropped():
    ai = [
        _line("L1", 1, "JOHN", "Where were you?"),
        _line("L2", 2, "MARY", "Out walking."),
        _line("L5", 5, "JOHN", "All night?"),
    ]
    result = reconcile(ai, INLINE_CUE)
    assert len(result.lines) == 3
    assert any("Gaps" in issue for issue in result.issues)
    _assert_contiguous(result.lines)


def test_sorted_by_source_position_not_ai_order():
    ai = [
        _line("L1", 1, "JOHN", "All night?"),
        _line("L2", 2, "JOHN", "Where were you?"),
        _line("L3", 3, "MARY", "Out walking."),
    ]
    result = reconcile(ai, INLINE_CUE)
    assert [l.text for l in result.lines] == ["Where were you?", "Out walking.", "All night?"]


def test_repeated_text_keeps_each_occurrence():
    text = "INT. ROOM - DAY\n\nANNA\nYes.\n\nBEN\nNo.\n\nANNA\nYes.\n"
    ai = make_lines(("ANNA", "Yes."), ("BEN", "No."), ("ANNA", "Yes."))
    result = reconcile(ai, text)
    assert [(l.character, l.text) for l in result.lines] == [
        ("ANNA", "Yes."), ("BEN", "No."), ("ANNA", "Yes."),
    ]


def test_wrapped_text_located_across_line_breaks():
    text = "INT. CAR - NIGHT\n\nMARY\nThen you know\nwhy I left.\n\nJOHN\nI do.\n"
    ai = [
        _line("L1", 1, "JOHN", "I do."),
        _line("L2", 2, "MARY", "Then you know why I left."),
    ]
    result = reconcile(ai, text)
    assert [l.character for l in result.lines] == ["MARY", "JOHN"]


def test_text_only_extraction_uses_heuristic():
    result = reconcile(None, INLINE_CUE)
    assert result.strategy == "heuristic_only"
    assert [l.text for l in result.lines] == ["Where were you?", "All night?"]


def test_id_map_follows_renumbering():
    ai = [_line("L1", 1, "MARY", "Out walking."), _line("L2", 2, "JOHN", "All night?")]
    result = reconcile(ai, INLINE_CUE)
    assert [l.text for l in result.lines] == ["Where were you?", "Out walking.", "All night?"]
    assert result.id_map == {"L1": "L2", "L2": "L3"}


def test_id_map_points_covered_ai_lines_at_base_line():
    ai = [_line("A1", 1, "JOHN", "All night?")]
    result = reconcile(ai, INLINE_CUE)
    assert result.strategy == "heuristic"
    assert result.id_map == {"A1": "L2"}


def test_scene_bounds_remapped_and_unknown_bounds_dropped():
    scenes = [
        Scene("S1", "INT. KITCHEN - NIGHT", "L1", "L1"),
        Scene("S2", "EXT. YARD - DAY", "L2", "L9"),
        Scene("S3", "INT. HALL - DAY"),
    ]
    remapped = remap_scenes(scenes, {"L1": "L2", "L2": "L3"})
    assert [(s.start_line_id, s.end_line_id) for s in remapped] == [("L2", "L2"), ("L3", None), (None, None)]
    assert remapped[1].heading == "EXT. YARD - DAY"


def test_clean_merge_reports_no_source_issues():
    ai = make_lines(("JOHN", "Where were you?"), ("MARY", "Out walking."), ("JOHN", "All night?"))
    result = reconcile(ai, INLINE_CUE)
    assert validate_reconciled(result.lines, INLINE_CUE, ai, result.id_map) == []


def test_line_missing_from_source_text_reported():
    ai = make_lines(("JOHN", "Where were you?"), ("MARY", "Something she never said."))
    result = reconcile(ai, INLINE_CUE)
    assert any("not found in source text" in issue for issue in result.issues)


def test_unmapped_ai_line_reported():
    ai = make_lines(("JOHN", "Where were you?"))
    issues = validate_reconciled(ai, INLINE_CUE, ai, {})
    assert any("without a reconciled counterpart" in i for i in issues)


def test_empty_ai_text_dropped_with_issue():
    ai = make_lines(("JOHN", "Where were you?"), ("MARY", "  "), ("JOHN", "All night?"))
    result = reconcile(ai, INLINE_CUE)
    assert all(l.text.strip() for l in result.lines)
    assert any("empty text" in issue for issue in result.issues)


# --- validate_order ---

def test_validate_order_clean_sequence():
    assert validate_order(make_lines(("A", "x"), ("B", "y"))) == []


def test_validate_order_reports_duplicates_and_start():
    lines = [_line("L1", 2, "A", "x"), _line("L2", 2, "B", "y"), _line("L3", 3, "A", "z")]
    issues = validate_order(lines)
    assert any("Duplicate" in i for i in issues)
    assert any("starts at 2" in i for i in issues)
