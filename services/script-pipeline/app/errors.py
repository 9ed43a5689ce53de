"""Typed failures raised by pipeline stages.

Every external call is converted into one of these before it leaves the
stage that made it.  ``user_message`` is the only text shown to end users;
``str(exc)`` carries the diagnostic detail for logs.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class: a stage failed with a known, reportable cause."""

    stage = "pipeline"
    default_message = "Something went wrong. Please try again."
    retryable = True

    def __init__(self, message: str, kind: str = "error", user_message: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.user_message = user_message or self.messages().get(kind, self.default_message)

    @classmethod
    def messages(cls) -> dict[str, str]:
        return {}

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "kind": self.kind,
            "detail": self.user_message,
            "retryable": self.retryable,
        }


class InputRejectedError(PipelineError):
    """The upload was refused locally, before any external call."""

    stage = "input"
    retryable = False
    default_message = "The file could not be accepted."

    @classmethod
    def messages(cls) -> dict[str, str]:
        return {
            "unsupported_format": "Unsupported file format. Please use PDF, Word, RTF, or plain text files.",
            "unreadable_document": "Could not validate the file. It may be corrupted.",
        }


class ExtractionError(PipelineError):
    stage = "extraction"
    default_message = "Failed to extract text from the document."

    @classmethod
    def messages(cls) -> dict[str, str]:
        return {
            "invalid_credentials": "Invalid document service API key. Please check your configuration.",
            "timeout": "Request timed out. Please try again.",
            "rate_limited": "Rate limit exceeded. Please try again later.",
            "unsupported_format": "This file format is not supported. Please use PDF, Word, RTF, or plain text files.",
            "unreadable_content": "The file could not be processed. It may be corrupted or in an unsupported format.",
            "empty_result": "No text could be extracted from the document. Please make sure the document contains readable text.",
        }


class LineValidationError(PipelineError):
    """The line list is structurally unusable for synthesis."""

    stage = "voice_assignment"
    retryable = False
    default_message = "The script has no usable dialogue lines."


class SynthesisError(PipelineError):
    stage = "synthesis"
    default_message = "Audio generation failed. Your script is saved; you can retry safely."


class AlignmentError(PipelineError):
    stage = "alignment"
    default_message = "Cue sheet generation failed. Your audio is saved; you can retry alignment safely."


class StorageError(PipelineError):
    stage = "storage"
    default_message = "The audio file could not be stored or retrieved."


class ProjectNotFoundError(PipelineError):
    stage = "persistence"
    retryable = False
    default_message = "Project not found."
