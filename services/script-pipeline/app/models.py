"""Data models for the script-to-dialogue pipeline."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, replace
from typing import Iterable, Optional


# Normalized character name -> synthetic voice id.
VoiceMapping = dict[str, str]

_TRAILING_PARENTHETICAL = re.compile(r"\s*\(.*\)\s*$")
_TRAILING_PUNCTUATION = re.compile(r"[.,:;!?]+$")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class DialogueLine:
    """One attributable utterance, in playback order."""

    line_id: str
    order: int
    character: str
    text: str

    def to_dict(self) -> dict:
        return {
            "lineId": self.line_id,
            "order": self.order,
            "character": self.character,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: dict, position: int = 0) -> "DialogueLine":
        """Build a line from its wire form.

        ``order`` is optional on the wire (the extraction contract only
        promises ``lineId``); *position* is used when it is absent.
        """
        order = data.get("order")
        try:
            order = int(order) if order is not None else position
        except (TypeError, ValueError):
            order = position
        return cls(
            line_id=str(data.get("lineId") or data.get("line_id") or ""),
            order=order,
            character=normalize_character(str(data.get("character") or "")),
            text=str(data.get("text") or ""),
        )


@dataclass
class Scene:
    scene_id: str
    heading: str
    start_line_id: Optional[str] = None
    end_line_id: Optional[str] = None
    page_start: Optional[int] = None
    page_end: Optional[int] = None

    def to_dict(self) -> dict:
        out = {"sceneId": self.scene_id, "heading": self.heading}
        # Scenes without dialogue omit their line bounds.
        if self.start_line_id is not None:
            out["startLineId"] = self.start_line_id
        if self.end_line_id is not None:
            out["endLineId"] = self.end_line_id
        out["pageStart"] = self.page_start
        out["pageEnd"] = self.page_end
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Scene":
        return cls(
            scene_id=str(data.get("sceneId") or ""),
            heading=str(data.get("heading") or ""),
            start_line_id=data.get("startLineId"),
            end_line_id=data.get("endLineId"),
            page_start=_optional_int(data.get("pageStart")),
            page_end=_optional_int(data.get("pageEnd")),
        )


@dataclass
class ExtractionResult:
    """Verbatim document text plus, when the contract held, its line list.

    ``lines is None`` means the extraction produced text only.
    """

    text: str
    lines: Optional[list[DialogueLine]] = None
    scenes: Optional[list[Scene]] = None
    source_sha256: Optional[str] = None
    sha256_verified: Optional[bool] = None

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "lines": [l.to_dict() for l in self.lines] if self.lines is not None else None,
            "scenes": [s.to_dict() for s in self.scenes] if self.scenes is not None else None,
            "sourceSha256": self.source_sha256,
            "sha256Verified": self.sha256_verified,
        }


@dataclass
class ReconciliationResult:
    lines: list[DialogueLine]
    issues: list[str] = field(default_factory=list)
    strategy: str = "ai"  # "ai" | "merged" | "heuristic" | "heuristic_only"
    # Extractor line id -> final line id, for AI lines that survived.
    id_map: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TimingSpan:
    text: str
    start: float
    end: float


@dataclass(frozen=True)
class WordTiming:
    text: str
    start: float
    end: float
    loss: float = 0.0


@dataclass
class AlignmentResult:
    """Cue sheet: character- and word-level timings for the transcript."""

    characters: list[TimingSpan]
    words: list[WordTiming]
    loss: float = 0.0

    def to_dict(self) -> dict:
        return {
            "characters": [asdict(c) for c in self.characters],
            "words": [asdict(w) for w in self.words],
            "loss": self.loss,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AlignmentResult":
        return cls(
            characters=[
                TimingSpan(str(c.get("text", "")), float(c.get("start", 0.0)), float(c.get("end", 0.0)))
                for c in data.get("characters") or []
            ],
            words=[
                WordTiming(
                    str(w.get("text", "")),
                    float(w.get("start", 0.0)),
                    float(w.get("end", 0.0)),
                    float(w.get("loss", 0.0) or 0.0),
                )
                for w in data.get("words") or []
            ],
            loss=float(data.get("loss", 0.0) or 0.0),
        )


@dataclass
class CharacterRecord:
    id: str
    project_id: str
    name: str
    is_counter_reader: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Project:
    """Persisted state of one script submission and its derived artifacts."""

    id: str
    name: str
    script: str = ""
    lines: list[DialogueLine] = field(default_factory=list)
    scenes: list[Scene] = field(default_factory=list)
    source_sha256: Optional[str] = None
    chosen_character: Optional[str] = None
    audio_url: Optional[str] = None
    audio_line_ids: list[str] = field(default_factory=list)
    voice_mapping: VoiceMapping = field(default_factory=dict)
    alignment: Optional[AlignmentResult] = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "script": self.script,
            "lines": [l.to_dict() for l in self.lines],
            "scenes": [s.to_dict() for s in self.scenes],
            "sourceSha256": self.source_sha256,
            "chosenCharacter": self.chosen_character,
            "audioUrl": self.audio_url,
            "audioLineIds": list(self.audio_line_ids),
            "voiceMapping": dict(self.voice_mapping),
            "alignment": self.alignment.to_dict() if self.alignment else None,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Project":
        alignment = data.get("alignment")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            script=data.get("script") or "",
            lines=[DialogueLine.from_dict(l, i) for i, l in enumerate(data.get("lines") or [], start=1)],
            scenes=[Scene.from_dict(s) for s in data.get("scenes") or []],
            source_sha256=data.get("sourceSha256"),
            chosen_character=data.get("chosenCharacter"),
            audio_url=data.get("audioUrl"),
            audio_line_ids=list(data.get("audioLineIds") or []),
            voice_mapping=dict(data.get("voiceMapping") or {}),
            alignment=AlignmentResult.from_dict(alignment) if alignment else None,
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass
class NodeMetrics:
    """Timing for one pipeline stage."""

    node_name: str
    node_type: str  # "programmatic" | "external"
    duration_ms: int = 0
    ok: bool = True


@dataclass
class StageOutcome:
    """Result of one downstream stage, reported independently of the others."""

    stage: str
    ok: bool
    error: Optional[str] = None
    kind: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SynthesisResult:
    audio_url: str
    voice_mapping: VoiceMapping
    line_ids: list[str]


@dataclass
class PipelineResult:
    project: Project
    outcomes: list[StageOutcome] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    report: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "project": self.project.to_dict(),
            "stages": [o.to_dict() for o in self.outcomes],
            "issues": list(self.issues),
            "report": self.report,
        }


# ---------------------------------------------------------------------------
# Pure helpers over line sequences
# ---------------------------------------------------------------------------


def normalize_character(name: str) -> str:
    """Uppercase speaker name with continuation/extension markers removed.

    ``"Sarah (CONT'D)"`` -> ``"SARAH"``.  Diacritics are preserved.
    """
    cleaned = name.strip()
    cleaned = _TRAILING_PARENTHETICAL.sub("", cleaned)
    cleaned = _TRAILING_PUNCTUATION.sub("", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned.upper()


def normalize_text(text: str) -> str:
    """Comparison key for line text: trimmed, case-folded, single-spaced."""
    return _WHITESPACE.sub(" ", text).strip().casefold()


def reindex(lines: Iterable[DialogueLine]) -> list[DialogueLine]:
    """Return new lines numbered ``L1..LN`` / ``1..N`` in sequence order."""
    return [
        replace(line, line_id=f"L{i}", order=i)
        for i, line in enumerate(lines, start=1)
    ]


def unique_characters(lines: Iterable[DialogueLine]) -> list[str]:
    """Normalized character names in order of first appearance."""
    seen: dict[str, None] = {}
    for line in lines:
        name = normalize_character(line.character)
        if name and name not in seen:
            seen[name] = None
    return list(seen)


def build_transcript(lines: Iterable[DialogueLine]) -> str:
    """Join line texts by ``order`` with single spaces.

    The same string is submitted to synthesis and to alignment.
    """
    return " ".join(line.text for line in sorted(lines, key=lambda l: l.order))


def _optional_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
