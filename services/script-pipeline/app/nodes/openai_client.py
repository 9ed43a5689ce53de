"""Document-understanding client (OpenAI chat completions with file input).

One async call per document: the instruction contract and the file, as a
data URI, go in a single user message; the completion text comes back
unparsed.  HTTP and transport failures are converted to ``ExtractionError``
here so callers never see ``httpx`` exceptions.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .. import config
from ..errors import ExtractionError

log = logging.getLogger(__name__)

_STATUS_KINDS = {
    401: "invalid_credentials",
    403: "invalid_credentials",
    429: "rate_limited",
    400: "unreadable_content",
    415: "unreadable_content",
    422: "unreadable_content",
}


class TextExtractionService(Protocol):
    async def extract_document(self, data_url: str, filename: str, prompt: str) -> str:
        ...


class OpenAIExtractionClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str = config.OPENAI_API_KEY,
        base_url: str = config.OPENAI_BASE_URL,
        model: str = config.EXTRACTION_MODEL,
        max_tokens: int = config.EXTRACTION_MAX_TOKENS,
    ):
        self.http = http
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens

    async def extract_document(self, data_url: str, filename: str, prompt: str) -> str:
        """Return the raw completion text for *prompt* applied to the file."""
        if not self.api_key:
            raise ExtractionError("OPENAI_API_KEY is not set", kind="invalid_credentials")

        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "file",
                            "file": {"file_data": data_url, "filename": filename},
                        },
                    ],
                }
            ],
            "max_tokens": self.max_tokens,
        }

        log.info("Calling extraction model=%s file=%s", self.model, filename)
        try:
            resp = await self.http.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            log.error("Extraction request timed out for %s: %s", filename, e)
            raise ExtractionError(f"extraction of {filename} timed out", kind="timeout") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            kind = _STATUS_KINDS.get(status, "service_error")
            log.error("Extraction request for %s failed: HTTP %d %s",
                      filename, status, e.response.text[:500])
            raise ExtractionError(
                f"extraction of {filename} failed with HTTP {status}", kind=kind
            ) from e
        except httpx.HTTPError as e:
            log.error("Extraction request for %s failed: %s", filename, e)
            raise ExtractionError(f"extraction of {filename} failed: {e}", kind="service_error") from e

        try:
            content = resp.json()["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExtractionError(
                f"unexpected completion payload for {filename}", kind="service_error"
            ) from e

        if not content.strip():
            raise ExtractionError(f"empty completion for {filename}", kind="empty_result")

        log.info("Extraction model responded (%d chars)", len(content))
        return content
