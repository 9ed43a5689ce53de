"""Pipeline orchestrator.

Runs the script-to-dialogue stages in sequence, collecting per-stage
timing into a structured report:

    extraction -> reconciliation -> persist script and lines
    voice assignment -> synthesis -> persist audio -> alignment -> persist cue sheet

Extraction failures propagate to the caller.  Synthesis and alignment
failures are reported per stage and never undo what is already saved, so
either stage can be retried on its own.
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import ExtractionError, PipelineError, ProjectNotFoundError
from .models import (
    CharacterRecord,
    DialogueLine,
    ExtractionResult,
    PipelineResult,
    Project,
    ReconciliationResult,
    StageOutcome,
    normalize_character,
)
from .nodes import heuristic_parser, reconciler
from .nodes.document_extractor import DocumentExtractor, sha256_hex
from .nodes.dialogue_synthesizer import synthesize_dialogue
from .nodes.elevenlabs_client import AlignmentService, SpeechSynthesisService
from .nodes.forced_alignment import generate_cue_sheet
from .nodes.voice_assignment import voiced_lines
from .persistence import ProjectStore
from .storage import AudioStorage
from .timing import build_report, collect_metrics

log = logging.getLogger(__name__)


async def extract_script(
    extractor: Optional[DocumentExtractor],
    text: Optional[str] = None,
    document: Optional[bytes] = None,
    mime_type: str = "",
    filename: Optional[str] = None,
) -> tuple[ExtractionResult, ReconciliationResult]:
    """Extraction and reconciliation for typed text or an uploaded file."""
    if document is not None:
        if extractor is None:
            raise ExtractionError("no document extractor configured", kind="service_error")
        extraction = await extractor.extract(document, mime_type, filename)
    else:
        if not text or not text.strip():
            raise ExtractionError("submitted script text is empty", kind="empty_result")
        extraction = ExtractionResult(text=text, source_sha256=sha256_hex(text))

    result = reconciler.reconcile(extraction.lines, extraction.text)
    return extraction, result


async def submit_script(
    store: ProjectStore,
    name: str,
    text: Optional[str] = None,
    document: Optional[bytes] = None,
    mime_type: str = "",
    filename: Optional[str] = None,
    extractor: Optional[DocumentExtractor] = None,
) -> tuple[PipelineResult, list[CharacterRecord]]:
    """Create a project from a script and derive its lines and characters."""
    with collect_metrics() as metrics:
        extraction, result = await extract_script(
            extractor, text=text, document=document, mime_type=mime_type, filename=filename,
        )

        names = heuristic_parser.characters_from_lines(result.lines)
        if not names:
            names = heuristic_parser.identify_characters(extraction.text)

        project = await store.create_project(
            name,
            script=extraction.text,
            lines=result.lines,
            scenes=reconciler.remap_scenes(extraction.scenes or [], result.id_map),
            source_sha256=extraction.source_sha256,
        )
        characters = await store.replace_characters(project.id, names)

    report = build_report(metrics)
    log.info(
        "Script submitted: project=%s lines=%d characters=%d strategy=%s | total=%dms",
        project.id, len(result.lines), len(characters), result.strategy,
        report["total_duration_ms"],
    )
    outcomes = [
        StageOutcome("extraction", True),
        StageOutcome("reconciliation", True),
    ]
    return PipelineResult(project, outcomes, result.issues, report), characters


async def choose_character(
    store: ProjectStore, project_id: str, name: str
) -> tuple[Project, list[CharacterRecord]]:
    """Record the user's own role; every other character is counter-read."""
    chosen = normalize_character(name)
    characters = await store.list_characters(project_id)
    if chosen not in {normalize_character(c.name) for c in characters}:
        raise ProjectNotFoundError(
            f"character {name!r} not in project {project_id}",
            kind="character_not_found",
            user_message="Character not found.",
        )

    for c in characters:
        wanted = normalize_character(c.name) != chosen
        if c.is_counter_reader != wanted:
            await store.set_counter_reader(project_id, c.id, wanted)

    project = await store.update_project(project_id, chosen_character=chosen)
    log.info("Project %s: user plays %s", project_id, chosen)
    return project, await store.list_characters(project_id)


async def generate_audio(
    store: ProjectStore,
    project_id: str,
    tts: SpeechSynthesisService,
    aligner: AlignmentService,
    storage: AudioStorage,
    align: bool = True,
) -> PipelineResult:
    """Synthesize counter-reader audio and, optionally, its cue sheet."""
    with collect_metrics() as metrics:
        project = await store.get_project(project_id)
        lines = await _voiced_lines(store, project)
        outcomes: list[StageOutcome] = []

        try:
            synthesis = await synthesize_dialogue(project.id, lines, tts, storage)
            project = await store.update_project(
                project.id,
                audio_url=synthesis.audio_url,
                voice_mapping=synthesis.voice_mapping,
                audio_line_ids=synthesis.line_ids,
                alignment=None,
            )
            outcomes.append(StageOutcome("synthesis", True))
        except PipelineError as e:
            log.error("Synthesis failed for project %s: %s", project.id, e)
            outcomes.append(_failed("synthesis", e))
        else:
            if align:
                project, outcome = await _align(store, project, lines, aligner, storage)
                outcomes.append(outcome)

    return _finish(project, outcomes, metrics)


async def realign(
    store: ProjectStore,
    project_id: str,
    aligner: AlignmentService,
    storage: AudioStorage,
) -> PipelineResult:
    """Request a new cue sheet for the saved audio without re-synthesizing."""
    with collect_metrics() as metrics:
        project = await store.get_project(project_id)
        if not project.audio_url:
            outcome = StageOutcome(
                "alignment", False,
                error="No audio has been generated for this project yet.",
                kind="no_audio",
            )
            return _finish(project, [outcome], metrics)

        lines = _lines_by_id(project.lines, project.audio_line_ids)
        if not lines:
            lines = await _voiced_lines(store, project)
        project, outcome = await _align(store, project, lines, aligner, storage)

    return _finish(project, [outcome], metrics)


async def _align(
    store: ProjectStore,
    project: Project,
    lines: list[DialogueLine],
    aligner: AlignmentService,
    storage: AudioStorage,
) -> tuple[Project, StageOutcome]:
    try:
        cue_sheet = await generate_cue_sheet(project.audio_url, lines, aligner, storage)
        project = await store.update_project(project.id, alignment=cue_sheet)
    except PipelineError as e:
        log.error("Alignment failed for project %s: %s", project.id, e)
        return project, _failed("alignment", e)
    return project, StageOutcome("alignment", True)


async def _voiced_lines(store: ProjectStore, project: Project) -> list[DialogueLine]:
    characters = await store.list_characters(project.id)
    excluded = [c.name for c in characters if not c.is_counter_reader]
    return voiced_lines(project.lines, project.chosen_character, excluded)


def _lines_by_id(lines: list[DialogueLine], line_ids: list[str]) -> list[DialogueLine]:
    wanted = set(line_ids)
    return [l for l in lines if l.line_id in wanted]


def _failed(stage: str, error: PipelineError) -> StageOutcome:
    return StageOutcome(stage, False, error=error.user_message, kind=error.kind)


def _finish(project: Project, outcomes: list[StageOutcome], metrics) -> PipelineResult:
    report = build_report(metrics)
    log.info(
        "Project %s: %s | total=%dms (programmatic=%dms, external=%dms)",
        project.id,
        ", ".join(f"{o.stage}={'ok' if o.ok else 'failed'}" for o in outcomes),
        report["total_duration_ms"],
        report["programmatic_duration_ms"],
        report["external_duration_ms"],
    )
    return PipelineResult(project, outcomes, report=report)
