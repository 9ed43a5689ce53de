"""Tests for the HTTP surface."""

from conftest import SCRIPT


def _create(client, text=SCRIPT, name="Rehearsal"):
    resp = client.post("/projects", json={"name": name, "text": text})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_characters_endpoint(client):
    resp = client.post("/characters", json={"text": SCRIPT})
    assert resp.json() == {"characters": ["JOHN", "MARY"]}


def test_lines_endpoint(client):
    resp = client.post("/lines", json={"text": SCRIPT})
    lines = resp.json()["lines"]
    assert lines[0] == {"lineId": "L1", "order": 1, "character": "JOHN", "text": "Where were you?"}
    assert len(lines) == 3


def test_missing_body_field_is_422(client):
    resp = client.post("/characters", json={"txt": SCRIPT})
    assert resp.status_code == 422
    assert "body_preview" in resp.json()


def test_create_and_fetch_project(client):
    body = _create(client)
    project_id = body["project"]["id"]
    assert [c["name"] for c in body["characters"]] == ["JOHN", "MARY"]
    assert [s["stage"] for s in body["stages"]] == ["extraction", "reconciliation"]

    fetched = client.get(f"/projects/{project_id}").json()
    assert fetched["name"] == "Rehearsal"
    assert len(fetched["lines"]) == 3

    listing = client.get("/projects").json()
    assert listing[0]["id"] == project_id
    assert listing[0]["lineCount"] == 3


def test_unknown_project_is_404(client):
    resp = client.get("/projects/nope")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Project not found."


def test_upload_plain_text(client, extraction_service):
    resp = client.post(
        "/projects/upload",
        data={"name": "Upload"},
        files={"file": ("script.txt", SCRIPT.encode(), "text/plain")},
    )
    assert resp.status_code == 200, resp.text
    assert len(resp.json()["project"]["lines"]) == 3
    assert extraction_service.calls == []


def test_extract_rejects_oversize_pdf(client, extraction_service):
    big = b"%PDF-1.4\n" + b"0" * (6 * 1024 * 1024)
    resp = client.post("/extract", files={"file": ("big.pdf", big, "application/pdf")})
    assert resp.status_code == 413
    assert resp.json()["detail"] == "File size is 6.00MB. Maximum allowed is 5MB."
    assert extraction_service.calls == []


def test_extract_unsupported_format(client):
    resp = client.post("/extract", files={"file": ("photo.png", b"\x89PNG", "image/png")})
    assert resp.status_code == 400
    assert resp.json()["error"]["kind"] == "unsupported_format"


def test_extract_text_only_reply(client, extraction_service):
    extraction_service.response = SCRIPT
    resp = client.post("/extract", files={"file": ("s.rtf", b"{\\rtf1 x}", "application/rtf")})
    body = resp.json()
    assert resp.status_code == 200
    assert body["extractedLines"] is None
    assert body["strategy"] == "heuristic_only"
    assert len(body["lines"]) == 3


def test_characters_flags_and_choice(client):
    project_id = _create(client)["project"]["id"]
    chars = client.get(f"/projects/{project_id}/characters").json()
    john = next(c for c in chars if c["name"] == "JOHN")

    resp = client.put(f"/projects/{project_id}/characters/{john['id']}", json={"is_counter_reader": False})
    assert resp.json()["isCounterReader"] is False

    resp = client.put(f"/projects/{project_id}/chosen-character", json={"character": "Mary"})
    body = resp.json()
    assert body["chosenCharacter"] == "MARY"
    assert {c["name"]: c["isCounterReader"] for c in body["characters"]} == {"JOHN": True, "MARY": False}


def test_audio_generation_and_streaming(client, tts, aligner):
    project_id = _create(client)["project"]["id"]

    resp = client.post(f"/projects/{project_id}/audio", json={"align": True})
    body = resp.json()
    assert resp.status_code == 200
    assert [(s["stage"], s["ok"]) for s in body["stages"]] == [("synthesis", True), ("alignment", True)]
    assert body["project"]["alignment"]["words"]

    filename = body["project"]["audioUrl"].rsplit("/", 1)[-1]
    full = client.get(f"/audio/{filename}")
    assert full.status_code == 200
    assert full.content == tts.audio
    assert full.headers["accept-ranges"] == "bytes"

    partial = client.get(f"/audio/{filename}", headers={"Range": "bytes=0-3"})
    assert partial.status_code == 206
    assert partial.content == tts.audio[:4]
    assert partial.headers["content-range"] == f"bytes 0-3/{len(tts.audio)}"


def test_audio_failure_reported_per_stage(client, failing_tts):
    from app.main import app

    app.state.tts = failing_tts
    project_id = _create(client)["project"]["id"]
    resp = client.post(f"/projects/{project_id}/audio")
    body = resp.json()
    assert resp.status_code == 200
    assert body["stages"][0]["ok"] is False
    assert body["project"]["lines"]


def test_realign_endpoint(client):
    project_id = _create(client)["project"]["id"]
    client.post(f"/projects/{project_id}/audio", json={"align": False})
    resp = client.post(f"/projects/{project_id}/alignment")
    assert resp.json()["stages"] == [{"stage": "alignment", "ok": True, "error": None, "kind": None}]


def test_audio_not_found(client):
    assert client.get("/audio/missing.mp3").status_code == 404


def test_delete_project(client):
    project_id = _create(client)["project"]["id"]
    assert client.delete(f"/projects/{project_id}").json() == {"ok": True}
    assert client.get(f"/projects/{project_id}").status_code == 404
