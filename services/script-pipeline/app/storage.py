"""Durable local storage for synthesized audio.

Files are write-once: a name is never reused, so a regenerated project
gets a new file and the previous audio stays readable until replaced in
the project record.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import unquote, urlsplit

import aiofiles

from . import config
from .errors import StorageError

log = logging.getLogger(__name__)


def safe_filename(name: str) -> str:
    """Validate a stored file name, rejecting path traversal."""
    if not name or ".." in name or "/" in name or "\\" in name:
        raise StorageError(f"invalid audio file name: {name!r}", kind="invalid_name")
    return name


class AudioStorage:
    def __init__(self, root: str | Path = config.AUDIO_DIR, public_base_url: str = config.PUBLIC_BASE_URL):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, name: str) -> Path:
        return self.root / safe_filename(name)

    def url_for(self, name: str) -> str:
        return f"{self.public_base_url}/audio/{safe_filename(name)}"

    async def save(self, name: str, data: bytes) -> str:
        """Store *data* under *name* and return its public URL."""
        path = self.path_for(name)
        os.makedirs(self.root, exist_ok=True)
        try:
            async with aiofiles.open(path, "xb") as out:
                await out.write(data)
        except FileExistsError as e:
            raise StorageError(f"audio file {name} already exists", kind="exists") from e
        except OSError as e:
            log.error("Failed to write %s: %s", path, e)
            raise StorageError(f"could not write {name}: {e}", kind="write_failed") from e

        log.info("Stored %d bytes of audio at %s", len(data), path)
        return self.url_for(name)

    async def load(self, name_or_url: str) -> bytes:
        """Read a stored file by name or by the URL ``save`` returned."""
        path = self.path_for(name_from_url(name_or_url))
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except FileNotFoundError as e:
            raise StorageError(f"audio file {path.name} not found", kind="not_found") from e
        except OSError as e:
            raise StorageError(f"could not read {path.name}: {e}", kind="read_failed") from e

        log.info("Loaded %d bytes of audio from %s", len(data), path)
        return data


def name_from_url(name_or_url: str) -> str:
    """Last path segment of a storage URL (or the name itself)."""
    path = urlsplit(name_or_url).path
    name = unquote(path.rstrip("/").rsplit("/", 1)[-1])
    if not name:
        raise StorageError(f"no file name in {name_or_url!r}", kind="invalid_name")
    return name
