"""ElevenLabs client: multi-speaker dialogue synthesis and forced alignment."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import aiofiles
import httpx

from .. import config
from ..errors import AlignmentError, PipelineError, SynthesisError

log = logging.getLogger(__name__)


class SpeechSynthesisService(Protocol):
    async def text_to_dialogue(self, payload: dict) -> bytes:
        ...


class AlignmentService(Protocol):
    async def align(self, audio_path: Path, transcript: str) -> dict:
        ...


class ElevenLabsClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str = config.ELEVENLABS_API_KEY,
        base_url: str = config.ELEVENLABS_BASE_URL,
    ):
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def text_to_dialogue(self, payload: dict) -> bytes:
        """POST the batched dialogue request; returns the rendered audio."""
        log.info("Calling text-to-dialogue with %d input(s), model=%s",
                 len(payload.get("inputs", [])), payload.get("modelId"))
        resp = await self._post(
            "/text-to-dialogue", SynthesisError, json=payload,
        )
        if not resp.content:
            raise SynthesisError("text-to-dialogue returned no audio", kind="empty_audio")
        log.info("Received %d bytes of audio", len(resp.content))
        return resp.content

    async def align(self, audio_path: Path, transcript: str) -> dict:
        """POST audio and transcript as multipart; returns the cue sheet JSON."""
        log.info("Calling forced-alignment: %s, transcript %d chars",
                 audio_path, len(transcript))
        try:
            async with aiofiles.open(audio_path, "rb") as f:
                audio = await f.read()
        except OSError as e:
            raise AlignmentError(f"cannot read {audio_path}: {e}", kind="read_failed") from e

        resp = await self._post(
            "/forced-alignment",
            AlignmentError,
            files={"file": ("audio.mp3", audio, "audio/mpeg")},
            data={"text": transcript},
        )
        try:
            return resp.json()
        except ValueError as e:
            raise AlignmentError("forced-alignment returned invalid JSON", kind="bad_response") from e

    async def _post(self, path: str, error: type[PipelineError], **kwargs) -> httpx.Response:
        if not self.api_key:
            raise error("ELEVENLABS_API_KEY is not set", kind="invalid_credentials")

        url = f"{self.base_url}{path}"
        try:
            resp = await self.http.post(url, headers={"xi-api-key": self.api_key}, **kwargs)
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            log.error("%s timed out: %s", path, e)
            raise error(f"{path} timed out", kind="timeout") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.error("%s failed: HTTP %d %s", path, status, e.response.text[:500])
            kind = {401: "invalid_credentials", 429: "rate_limited"}.get(status, "service_error")
            raise error(f"{path} failed with HTTP {status}", kind=kind) from e
        except httpx.HTTPError as e:
            log.error("%s failed: %s", path, e)
            raise error(f"{path} failed: {e}", kind="service_error") from e
        return resp
