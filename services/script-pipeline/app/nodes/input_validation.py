"""Local checks on uploaded documents, run before any extraction call."""

from __future__ import annotations

import logging
from pathlib import PurePath

import fitz

from .. import config
from ..errors import InputRejectedError

log = logging.getLogger(__name__)

PDF = "application/pdf"
DOC = "application/msword"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
RTF = "application/rtf"
TEXT = "text/plain"

# Declared MIME type -> file extension used when naming the attachment.
EXTERNAL_TYPES = {
    PDF: "pdf",
    DOC: "doc",
    DOCX: "docx",
    RTF: "rtf",
}
SUPPORTED_TYPES = frozenset(EXTERNAL_TYPES) | {TEXT}

_ALIASES = {
    "text/rtf": RTF,
    "application/x-rtf": RTF,
    "application/x-pdf": PDF,
}

_EXTENSIONS = {
    ".txt": TEXT,
    ".pdf": PDF,
    ".doc": DOC,
    ".docx": DOCX,
    ".rtf": RTF,
}


def resolve_mime_type(mime_type: str | None, filename: str | None = None) -> str:
    """Canonical MIME type for an upload.

    Parameters such as ``; charset=utf-8`` are dropped.  A ``.txt`` file is
    always plain text; other extensions only fill in a missing or generic
    declared type.
    """
    declared = (mime_type or "").split(";")[0].strip().lower()
    declared = _ALIASES.get(declared, declared)

    suffix = PurePath(filename).suffix.lower() if filename else ""
    if suffix == ".txt":
        return TEXT
    if declared in ("", "application/octet-stream") and suffix in _EXTENSIONS:
        return _EXTENSIONS[suffix]
    return declared


def validate_document(data: bytes, mime_type: str, filename: str | None = None) -> str:
    """Reject unsupported, oversize or overlong documents.

    Returns the resolved MIME type.  Plain text skips the size and page
    ceilings since it never leaves the process.
    """
    resolved = resolve_mime_type(mime_type, filename)
    if resolved not in SUPPORTED_TYPES:
        raise InputRejectedError(
            f"unsupported MIME type {mime_type!r} for {filename or 'upload'}",
            kind="unsupported_format",
        )
    if resolved == TEXT:
        return resolved

    check_size(data, config.MAX_UPLOAD_MB)
    if resolved == PDF:
        check_pdf_pages(data, config.MAX_PDF_PAGES)

    log.info("Accepted %s upload (%d bytes)", resolved, len(data))
    return resolved


def check_size(data: bytes, max_mb: float) -> None:
    size_mb = len(data) / (1024 * 1024)
    if size_mb > max_mb:
        raise InputRejectedError(
            f"upload of {len(data)} bytes exceeds {max_mb:g}MB",
            kind="file_too_large",
            user_message=f"File size is {size_mb:.2f}MB. Maximum allowed is {max_mb:g}MB.",
        )


def check_pdf_pages(data: bytes, max_pages: int) -> int:
    """Count PDF pages with PyMuPDF and enforce the ceiling."""
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = doc.page_count
    except (RuntimeError, ValueError) as exc:
        raise InputRejectedError(
            f"could not open PDF: {exc}", kind="unreadable_document"
        ) from exc

    if pages == 0:
        raise InputRejectedError(
            "PDF reports zero pages",
            kind="unreadable_document",
            user_message="Could not determine number of pages in PDF",
        )
    if pages > max_pages:
        raise InputRejectedError(
            f"PDF has {pages} pages, limit {max_pages}",
            kind="too_many_pages",
            user_message=f"PDF has {pages} pages. Maximum allowed is {max_pages} pages.",
        )
    return pages
