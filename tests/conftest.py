"""Shared fixtures: in-memory service fakes and tmp-path backed stores."""

import hashlib
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.errors import AlignmentError, SynthesisError
from app.main import app
from app.models import DialogueLine
from app.nodes.document_extractor import DELIMITER, DocumentExtractor
from app.persistence import ProjectStore
from app.storage import AudioStorage


SCRIPT = """INT. KITCHEN - NIGHT

JOHN
Where were you?

MARY
Out walking.

JOHN
(quietly)
All night?
"""


# --- Fakes ---

class FakeExtractionService:
    def __init__(self, response=""):
        self.response = response
        self.calls = []

    async def extract_document(self, data_url, filename, prompt):
        self.calls.append({"data_url": data_url, "filename": filename, "prompt": prompt})
        return self.response


class FakeTTS:
    def __init__(self, audio=b"ID3-fake-mp3-bytes", error=None):
        self.audio = audio
        self.error = error
        self.payloads = []

    async def text_to_dialogue(self, payload):
        self.payloads.append(payload)
        if self.error:
            raise self.error
        return self.audio


class FakeAligner:
    """Returns one word span per space-separated token of the transcript."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def align(self, audio_path, transcript):
        path = Path(audio_path)
        self.calls.append({
            "path": path,
            "existed": path.exists(),
            "audio": path.read_bytes() if path.exists() else None,
            "transcript": transcript,
        })
        if self.error:
            raise self.error
        words = [
            {"text": w, "start": i * 0.5, "end": i * 0.5 + 0.4, "loss": 0.1}
            for i, w in enumerate(transcript.split(" "))
        ]
        characters = [
            {"text": c, "start": i * 0.05, "end": i * 0.05 + 0.04}
            for i, c in enumerate(transcript)
        ]
        return {"characters": characters, "words": words, "loss": 0.1}


# --- Helpers ---

def contract_response(text, lines, scenes=None, sha=None):
    payload = {
        "sourceSha256": sha or hashlib.sha256(text.encode("utf-8")).hexdigest(),
        "lines": lines,
    }
    if scenes is not None:
        payload["scenes"] = scenes
    return f"{text}\n{DELIMITER}\n{json.dumps(payload)}"


def make_lines(*pairs):
    return [
        DialogueLine(line_id=f"L{i}", order=i, character=c, text=t)
        for i, (c, t) in enumerate(pairs, start=1)
    ]


# --- Fixtures ---

@pytest.fixture
def store(tmp_path):
    return ProjectStore(tmp_path / "projects")


@pytest.fixture
def storage(tmp_path):
    return AudioStorage(tmp_path / "audio", "http://testserver")


@pytest.fixture
def tts():
    return FakeTTS()


@pytest.fixture
def aligner():
    return FakeAligner()


@pytest.fixture
def extraction_service():
    return FakeExtractionService()


@pytest.fixture
def client(store, storage, tts, aligner, extraction_service):
    app.state.store = store
    app.state.storage = storage
    app.state.tts = tts
    app.state.aligner = aligner
    app.state.extractor = DocumentExtractor(extraction_service, prompt="extract")
    return TestClient(app)


@pytest.fixture
def failing_tts():
    return FakeTTS(error=SynthesisError("boom", kind="service_error"))


@pytest.fixture
def failing_aligner():
    return FakeAligner(error=AlignmentError("boom", kind="service_error"))
