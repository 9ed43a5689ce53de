"""Document Text Extractor.

Plain text is decoded in-process.  PDF and Word/RTF documents are sent to
the document-understanding service under the instruction contract in
``prompts/extraction_contract.txt``; the reply is verbatim text, the
delimiter line, then one JSON object with ``sourceSha256``, ``lines`` and
optionally ``scenes`` or ``error``.

Parsing is fault-tolerant: a missing delimiter or unparseable JSON
degrades to a text-only result (``lines is None``).  Only a self-reported
``error`` in the payload, or an empty document, is a failure.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
from pathlib import Path

from ..errors import ExtractionError, InputRejectedError
from ..models import DialogueLine, ExtractionResult, Scene
from ..timing import timed_node
from . import input_validation
from .openai_client import TextExtractionService

log = logging.getLogger(__name__)

DELIMITER = "---DIALOGUE_JSON---"
PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def load_prompt(name: str = "extraction_contract.txt") -> str:
    return (PROMPTS_DIR / name).read_text(encoding="utf-8")


class DocumentExtractor:
    def __init__(self, service: TextExtractionService, prompt: str | None = None):
        self.service = service
        self.prompt = prompt if prompt is not None else load_prompt()

    @timed_node("document_extractor", "external")
    async def extract(
        self, data: bytes, mime_type: str, filename: str | None = None
    ) -> ExtractionResult:
        """Extract verbatim text and, when available, the line list."""
        resolved = input_validation.validate_document(data, mime_type, filename)

        if resolved == input_validation.TEXT:
            return extract_plain_text(data, filename)

        extension = input_validation.EXTERNAL_TYPES[resolved]
        attachment = f"document.{extension}"
        data_url = f"data:{resolved};base64,{base64.b64encode(data).decode('ascii')}"

        raw = await self.service.extract_document(data_url, attachment, self.prompt)
        result = parse_contract_response(raw)

        if not result.text.strip() and not result.lines:
            raise ExtractionError(
                f"no text extracted from {filename or attachment}", kind="empty_result"
            )

        log.info(
            "Extracted %d chars from %s, %s line(s), hash verified=%s",
            len(result.text), filename or attachment,
            "no" if result.lines is None else len(result.lines),
            result.sha256_verified,
        )
        return result


def extract_plain_text(data: bytes, filename: str | None = None) -> ExtractionResult:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputRejectedError(
            f"{filename or 'upload'} is not valid UTF-8 text", kind="unreadable_document"
        ) from e

    if not text.strip():
        raise ExtractionError(f"{filename or 'upload'} is empty", kind="empty_result")

    log.info("Read %d chars of plain text from %s", len(text), filename or "upload")
    return ExtractionResult(text=text, source_sha256=sha256_hex(text))


def parse_contract_response(raw: str) -> ExtractionResult:
    """Split a contract reply into verbatim text and its structured payload."""
    if DELIMITER not in raw:
        log.warning("Extraction reply has no %s delimiter; using text only", DELIMITER)
        return ExtractionResult(text=raw)

    text_part, json_part = raw.split(DELIMITER, 1)
    text = text_part.strip()

    try:
        payload = json.loads(_CODE_FENCE.sub("", json_part.strip()))
    except json.JSONDecodeError as e:
        log.warning("Extraction payload is not valid JSON (%s); using text only", e)
        return ExtractionResult(text=text)

    if not isinstance(payload, dict):
        log.warning("Extraction payload is a %s, not an object; using text only",
                    type(payload).__name__)
        return ExtractionResult(text=text)

    if payload.get("error"):
        message = str(payload["error"])
        raise ExtractionError(
            f"extraction service reported: {message}",
            kind="model_reported",
            user_message=f"The document could not be read: {message}",
        )

    sha = payload.get("sourceSha256")
    sha = str(sha) if sha else None
    return ExtractionResult(
        text=text,
        lines=_parse_lines(payload.get("lines")),
        scenes=_parse_scenes(payload.get("scenes")),
        source_sha256=sha,
        sha256_verified=verify_source_hash(text, sha) if sha else None,
    )


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def verify_source_hash(text: str, expected: str) -> bool:
    """Compare *expected* with the SHA-256 of *text*; mismatches only warn."""
    actual = sha256_hex(text)
    if actual != expected.strip().lower():
        log.warning("sourceSha256 mismatch: reported %s, computed %s", expected, actual)
        return False
    return True


def _parse_lines(items) -> list[DialogueLine] | None:
    if items is None:
        return None
    if not isinstance(items, list):
        log.warning("Extraction payload 'lines' is not a list; ignoring it")
        return None

    lines = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            log.warning("Skipping malformed line entry at position %d", position)
            continue
        lines.append(DialogueLine.from_dict(item, position))
    return lines


def _parse_scenes(items) -> list[Scene] | None:
    if not isinstance(items, list):
        return None
    return [Scene.from_dict(s) for s in items if isinstance(s, dict)]
