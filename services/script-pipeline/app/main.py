import logging
import os
import re

import aiofiles
import httpx
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from . import config, pipeline
from .errors import PipelineError
from .models import CharacterRecord
from .nodes import heuristic_parser, reconciler
from .nodes.document_extractor import DocumentExtractor
from .nodes.elevenlabs_client import ElevenLabsClient
from .nodes.openai_client import OpenAIExtractionClient
from .persistence import ProjectStore
from .storage import AudioStorage

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(
    title="Script Pipeline",
    description="Turns scripts into attributed dialogue lines, counter-reader audio and cue sheets",
)

_STATUS = {
    "unsupported_format": 400,
    "file_too_large": 413,
    "too_many_pages": 422,
    "unreadable_document": 422,
    "invalid_credentials": 401,
    "rate_limited": 429,
    "timeout": 504,
    "unreadable_content": 422,
    "empty_result": 422,
    "model_reported": 422,
    "empty_lines": 422,
    "malformed_lines": 422,
    "not_found": 404,
    "character_not_found": 404,
    "invalid_name": 400,
}


class TextRequest(BaseModel):
    text: str


class ProjectCreate(BaseModel):
    name: str
    text: str


class CounterReaderUpdate(BaseModel):
    is_counter_reader: bool


class ChosenCharacter(BaseModel):
    character: str


class AudioRequest(BaseModel):
    align: bool = True


@app.on_event("startup")
async def startup():
    http = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
    elevenlabs = ElevenLabsClient(http)
    app.state.http = http
    app.state.extractor = DocumentExtractor(OpenAIExtractionClient(http))
    app.state.tts = elevenlabs
    app.state.aligner = elevenlabs
    app.state.store = ProjectStore(config.PROJECTS_DIR)
    app.state.storage = AudioStorage(config.AUDIO_DIR, config.PUBLIC_BASE_URL)
    log.info("Script pipeline ready (extraction model=%s, tts model=%s)",
             config.EXTRACTION_MODEL, config.TTS_MODEL_ID)


@app.on_event("shutdown")
async def shutdown():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    body = await request.body()
    log.error("422 validation error on %s %s", request.method, request.url.path)
    log.error("Request body: %s", body.decode(errors="replace")[:2000])
    log.error("Validation errors: %s", exc.errors())
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "body_preview": body.decode(errors="replace")[:500]})


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    status = _STATUS.get(exc.kind)
    if status is None:
        status = 500 if exc.stage in ("storage", "persistence") else 502
    log.error("%s %s failed at %s (%s): %s",
              request.method, request.url.path, exc.stage, exc.kind, exc)
    return JSONResponse(status_code=status, content={"detail": exc.user_message, "error": exc.to_dict()})


# ---------------------------------------------------------------------------
# Stateless parsing
# ---------------------------------------------------------------------------


@app.post("/characters")
async def characters(request: TextRequest):
    log.info("POST /characters — text_length=%d", len(request.text))
    return {"characters": heuristic_parser.identify_characters(request.text)}


@app.post("/lines")
async def lines(request: TextRequest):
    log.info("POST /lines — text_length=%d", len(request.text))
    return {"lines": [l.to_dict() for l in heuristic_parser.extract_lines(request.text)]}


@app.post("/extract")
async def extract(file: UploadFile = File(...)):
    data = await file.read()
    log.info("POST /extract — %s (%s, %d bytes)", file.filename, file.content_type, len(data))
    extraction, result = await pipeline.extract_script(
        app.state.extractor,
        document=data,
        mime_type=file.content_type or "",
        filename=file.filename,
    )
    body = extraction.to_dict()
    body["extractedLines"] = body.pop("lines")
    body["lines"] = [l.to_dict() for l in result.lines]
    if extraction.scenes is not None:
        body["scenes"] = [
            s.to_dict() for s in reconciler.remap_scenes(extraction.scenes, result.id_map)
        ]
    body["strategy"] = result.strategy
    body["issues"] = result.issues
    return body


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@app.post("/projects")
async def create_project(request: ProjectCreate):
    log.info("POST /projects — name=%r text_length=%d", request.name, len(request.text))
    result, chars = await pipeline.submit_script(app.state.store, request.name, text=request.text)
    return _submission(result, chars)


@app.post("/projects/upload")
async def upload_project(name: str = Form(...), file: UploadFile = File(...)):
    data = await file.read()
    log.info("POST /projects/upload — name=%r file=%s (%s, %d bytes)",
             name, file.filename, file.content_type, len(data))
    result, chars = await pipeline.submit_script(
        app.state.store,
        name,
        document=data,
        mime_type=file.content_type or "",
        filename=file.filename,
        extractor=app.state.extractor,
    )
    return _submission(result, chars)


@app.get("/projects")
async def list_projects():
    projects = await app.state.store.list_projects()
    return [
        {
            "id": p.id,
            "name": p.name,
            "lineCount": len(p.lines),
            "chosenCharacter": p.chosen_character,
            "audioUrl": p.audio_url,
            "hasAlignment": p.alignment is not None,
            "createdAt": p.created_at,
            "updatedAt": p.updated_at,
        }
        for p in projects
    ]


@app.get("/projects/{project_id}")
async def get_project(project_id: str):
    project = await app.state.store.get_project(project_id)
    return project.to_dict()


@app.delete("/projects/{project_id}")
async def delete_project(project_id: str):
    await app.state.store.delete_project(project_id)
    return {"ok": True}


@app.get("/projects/{project_id}/characters")
async def list_characters(project_id: str):
    await app.state.store.get_project(project_id)
    return [_character(c) for c in await app.state.store.list_characters(project_id)]


@app.put("/projects/{project_id}/characters/{character_id}")
async def update_character(project_id: str, character_id: str, request: CounterReaderUpdate):
    record = await app.state.store.set_counter_reader(
        project_id, character_id, request.is_counter_reader,
    )
    return _character(record)


@app.put("/projects/{project_id}/chosen-character")
async def choose_character(project_id: str, request: ChosenCharacter):
    await app.state.store.get_project(project_id)
    project, chars = await pipeline.choose_character(app.state.store, project_id, request.character)
    return {
        "chosenCharacter": project.chosen_character,
        "characters": [_character(c) for c in chars],
    }


@app.post("/projects/{project_id}/audio")
async def generate_audio(project_id: str, request: AudioRequest | None = None):
    align = request.align if request is not None else True
    log.info("POST /projects/%s/audio — align=%s", project_id, align)
    result = await pipeline.generate_audio(
        app.state.store, project_id, app.state.tts, app.state.aligner, app.state.storage,
        align=align,
    )
    return result.to_dict()


@app.post("/projects/{project_id}/alignment")
async def realign(project_id: str):
    log.info("POST /projects/%s/alignment", project_id)
    result = await pipeline.realign(app.state.store, project_id, app.state.aligner, app.state.storage)
    return result.to_dict()


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------


@app.get("/audio/{filename}")
async def get_audio(filename: str, request: Request):
    """Serve stored audio with range-request support for seeking."""
    path = app.state.storage.path_for(filename)
    if not path.exists():
        raise HTTPException(status_code=404, detail=f"Audio file not found: {filename}")

    file_size = os.path.getsize(path)
    range_header = request.headers.get("Range")

    async def stream(start: int, length: int):
        async with aiofiles.open(path, "rb") as f:
            await f.seek(start)
            remaining = length
            while remaining > 0:
                chunk = await f.read(min(65536, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk

    if range_header:
        m = re.match(r"bytes=(\d+)-(\d*)", range_header)
        if m:
            start = int(m.group(1))
            if start >= file_size:
                raise HTTPException(
                    status_code=416,
                    detail="Requested range not satisfiable",
                    headers={"Content-Range": f"bytes */{file_size}"},
                )
            end = int(m.group(2)) if m.group(2) else file_size - 1
            end = min(end, file_size - 1)
            length = end - start + 1
            return StreamingResponse(
                stream(start, length),
                status_code=206,
                media_type="audio/mpeg",
                headers={
                    "Content-Range": f"bytes {start}-{end}/{file_size}",
                    "Accept-Ranges": "bytes",
                    "Content-Length": str(length),
                },
            )

    return StreamingResponse(
        stream(0, file_size),
        media_type="audio/mpeg",
        headers={
            "Accept-Ranges": "bytes",
            "Content-Length": str(file_size),
        },
    )


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "extraction_model": config.EXTRACTION_MODEL,
        "tts_model": config.TTS_MODEL_ID,
    }


def _character(record: CharacterRecord) -> dict:
    return {
        "id": record.id,
        "projectId": record.project_id,
        "name": record.name,
        "isCounterReader": record.is_counter_reader,
        "createdAt": record.created_at,
        "updatedAt": record.updated_at,
    }


def _submission(result, chars: list[CharacterRecord]) -> dict:
    body = result.to_dict()
    body["characters"] = [_character(c) for c in chars]
    return body
