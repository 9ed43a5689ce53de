"""Tests for the rule-based screenplay parser."""

from app.nodes import heuristic_parser
from app.nodes.heuristic_parser import (
    characters_from_lines,
    clean_character_name,
    extract_lines,
    identify_characters,
    is_scene_heading,
    looks_like_dialogue,
)

from conftest import SCRIPT, make_lines


CONTINUATION = """SARAH
I can't believe this is happening!

Sarah walks to the window.

SARAH (CONT'D)
We need to leave now.
"""

TITLED = """THE LONG NIGHT

FADE IN:

INT. KITCHEN - NIGHT

JOHN
Where were you?

MARY
Out walking.
"""


# --- Line extraction ---

def test_action_line_splits_continuation_into_two_lines():
    lines = extract_lines(CONTINUATION)
    assert [(l.character, l.text) for l in lines] == [
        ("SARAH", "I can't believe this is happening!"),
        ("SARAH", "We need to leave now."),
    ]


def test_lines_are_numbered_sequentially():
    lines = extract_lines(SCRIPT)
    assert [l.line_id for l in lines] == ["L1", "L2", "L3"]
    assert [l.order for l in lines] == [1, 2, 3]


def test_standalone_parenthetical_is_not_spoken_text():
    lines = extract_lines(SCRIPT)
    assert lines[2].character == "JOHN"
    assert lines[2].text == "All night?"


def test_wrapped_dialogue_joined_with_single_spaces():
    text = "INT. CAR - NIGHT\n\nMARY (V.O.)\nThen you know\n   why I left.\n\nJOHN\nI do.\n"
    lines = extract_lines(text)
    assert lines[0].character == "MARY"
    assert lines[0].text == "Then you know why I left."
    assert lines[1].text == "I do."


def test_inline_parenthetical_kept():
    text = "INT. HALL - DAY\n\nJOHN\nWait (beat) no, stop.\n\nMARY\nFine.\n"
    assert extract_lines(text)[0].text == "Wait (beat) no, stop."


def test_dialogue_stops_at_action_line():
    text = "INT. HALL - DAY\n\nJOHN\nHello there.\nThe door slams shut.\n\nMARY\nWho's there?\n"
    lines = extract_lines(text)
    assert [l.text for l in lines] == ["Hello there.", "Who's there?"]


def test_speech_that_reads_like_action_is_kept():
    text = (
        "JOHN\nThe car is ready.\n\n"
        "MARY\nA drink, please.\n\n"
        "JOHN\nNobody leaves tonight.\n"
    )
    lines = extract_lines(text)
    assert [(l.character, l.text) for l in lines] == [
        ("JOHN", "The car is ready."),
        ("MARY", "A drink, please."),
        ("JOHN", "Nobody leaves tonight."),
    ]


def test_action_after_first_speech_line_still_stops():
    text = "JOHN\nShe leaves now.\nShe leaves the room.\n\nMARY\nGood.\n"
    assert [l.text for l in extract_lines(text)] == ["She leaves now.", "Good."]


def test_dialogue_stops_at_scene_heading():
    text = "INT. HALL - DAY\n\nJOHN\nHello there.\nEXT. STREET - NIGHT\n\nMARY\nHi.\n"
    lines = extract_lines(text)
    assert lines[0].text == "Hello there."


def test_no_cues_yields_no_lines():
    assert extract_lines("Just some prose.\nNothing else happens here.") == []
    assert extract_lines("") == []


def test_diacritics_preserved_in_names():
    text = "INT. KÖK - DAG\n\nÅSA\nHej, hur mår du?\n\nJÖRGEN\nBra, tack.\n"
    lines = extract_lines(text)
    assert [l.character for l in lines] == ["ÅSA", "JÖRGEN"]


# --- Character identification ---

def test_title_line_excluded_from_characters():
    assert identify_characters(TITLED) == ["JOHN", "MARY"]


def test_identification_is_idempotent():
    assert identify_characters(SCRIPT) == identify_characters(SCRIPT)


def test_quoted_line_is_not_a_character():
    text = 'INT. ROOM - DAY\n\nJOHN\nHello.\n\n"MARY"\nShe is gone.\n\nMARY\nI am here.\n'
    assert identify_characters(text) == ["JOHN", "MARY"]


def test_recognised_parenthetical_accepts_cue():
    text = "INT. ROOM - DAY\n\nJOHN\nHello.\n\nMARY\n(V.O.)\nI hear you.\n"
    assert "MARY" in identify_characters(text)


def test_isolated_uppercase_line_is_treated_as_title():
    filler = "\n".join(f"Line {i} of description text." for i in range(12))
    text = f"{filler}\n\nCHAPTER ONE\nIt was a dark night.\n\n\n\nMore prose follows here.\n"
    assert identify_characters(text) == []


def test_empty_text_has_no_characters():
    assert identify_characters("   \n\n") == []


# --- Helpers ---

def test_clean_character_name():
    assert clean_character_name("  sarah   jane (CONT'D) ") == "SARAH JANE"
    assert clean_character_name("JOHN:") == "JOHN"


def test_scene_heading_prefixes_match_as_tokens():
    assert is_scene_heading("INT. KITCHEN - NIGHT")
    assert is_scene_heading("CUT TO:")
    assert not is_scene_heading("MUSICIAN")


def test_looks_like_dialogue():
    assert looks_like_dialogue("Where were you?")
    assert not looks_like_dialogue("JOHN")
    assert not looks_like_dialogue("lowercase start")
    assert not looks_like_dialogue("")


def test_characters_from_lines_sorted_unique():
    lines = make_lines(("mary", "Hi."), ("JOHN", "Hello."), ("Mary (V.O.)", "Bye."))
    assert characters_from_lines(lines) == ["JOHN", "MARY"]


def test_action_patterns_cover_name_and_verb():
    assert heuristic_parser.is_action_line("Sarah walks to the window.")
    assert heuristic_parser.is_action_line("We see the city below.")
    assert not heuristic_parser.is_action_line("I know what you did.")
