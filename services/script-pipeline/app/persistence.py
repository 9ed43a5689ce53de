"""File-backed project store.

One JSON document per project and one per project's character list under
``PROJECTS_DIR``.  Writes go through a temporary file and ``os.replace`` so
a reader never sees a half-written record; concurrent updates to the same
project are last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from dataclasses import asdict, fields, replace
from datetime import datetime, timezone
from pathlib import Path

import aiofiles

from . import config
from .errors import ProjectNotFoundError, StorageError
from .models import CharacterRecord, Project

log = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_PROJECT_FIELDS = {f.name for f in fields(Project)} - {"id", "created_at", "updated_at"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProjectStore:
    def __init__(self, root: str | Path = config.PROJECTS_DIR):
        self.root = Path(root)

    # -- projects ---------------------------------------------------------

    async def create_project(self, name: str, script: str = "", **values) -> Project:
        now = _now()
        project = Project(id=uuid.uuid4().hex, name=name, script=script,
                          created_at=now, updated_at=now)
        if values:
            project = replace(project, **self._checked(values))
        await self._write_json(self._project_path(project.id), project.to_dict())
        log.info("Created project %s (%r)", project.id, name)
        return project

    async def get_project(self, project_id: str) -> Project:
        data = await self._read_json(self._project_path(project_id))
        if data is None:
            raise ProjectNotFoundError(f"project {project_id} not found", kind="not_found")
        return Project.from_dict(data)

    async def list_projects(self) -> list[Project]:
        """All projects, most recently updated first."""
        directory = self.root / "projects"
        if not directory.is_dir():
            return []
        projects = []
        for path in directory.glob("*.json"):
            data = await self._read_json(path)
            if data is not None:
                projects.append(Project.from_dict(data))
        projects.sort(key=lambda p: p.updated_at, reverse=True)
        return projects

    async def update_project(self, project_id: str, **changes) -> Project:
        """Apply a partial update and bump ``updated_at``."""
        project = await self.get_project(project_id)
        project = replace(project, **self._checked(changes), updated_at=_now())
        await self._write_json(self._project_path(project_id), project.to_dict())
        log.info("Updated project %s: %s", project_id, sorted(changes))
        return project

    async def delete_project(self, project_id: str) -> None:
        path = self._project_path(project_id)
        if not path.exists():
            raise ProjectNotFoundError(f"project {project_id} not found", kind="not_found")
        await self.delete_characters(project_id)
        path.unlink()
        log.info("Deleted project %s", project_id)

    # -- characters -------------------------------------------------------

    async def create_character(
        self, project_id: str, name: str, is_counter_reader: bool = True
    ) -> CharacterRecord:
        records = await self._load_characters(project_id)
        now = _now()
        record = CharacterRecord(
            id=uuid.uuid4().hex, project_id=project_id, name=name,
            is_counter_reader=is_counter_reader, created_at=now, updated_at=now,
        )
        records.append(record)
        await self._save_characters(project_id, records)
        return record

    async def list_characters(self, project_id: str) -> list[CharacterRecord]:
        """Characters of a project, ordered by name."""
        return sorted(await self._load_characters(project_id), key=lambda c: c.name)

    async def set_counter_reader(
        self, project_id: str, character_id: str, is_counter_reader: bool
    ) -> CharacterRecord:
        records = await self._load_characters(project_id)
        for i, record in enumerate(records):
            if record.id == character_id:
                records[i] = replace(record, is_counter_reader=is_counter_reader, updated_at=_now())
                await self._save_characters(project_id, records)
                return records[i]
        raise ProjectNotFoundError(
            f"character {character_id} not found in project {project_id}",
            kind="character_not_found",
            user_message="Character not found.",
        )

    async def delete_characters(self, project_id: str) -> None:
        self._characters_path(project_id).unlink(missing_ok=True)

    async def replace_characters(
        self, project_id: str, names: list[str], counter_reader: bool = True
    ) -> list[CharacterRecord]:
        """Replace the character list, e.g. after the script changed."""
        now = _now()
        records = [
            CharacterRecord(
                id=uuid.uuid4().hex, project_id=project_id, name=name,
                is_counter_reader=counter_reader, created_at=now, updated_at=now,
            )
            for name in names
        ]
        await self._save_characters(project_id, records)
        log.info("Stored %d character(s) for project %s", len(records), project_id)
        return sorted(records, key=lambda c: c.name)

    # -- internals --------------------------------------------------------

    def _checked(self, values: dict) -> dict:
        unknown = set(values) - _PROJECT_FIELDS
        if unknown:
            raise TypeError(f"unknown project fields: {sorted(unknown)}")
        return values

    def _project_path(self, project_id: str) -> Path:
        return self.root / "projects" / f"{self._safe_id(project_id)}.json"

    def _characters_path(self, project_id: str) -> Path:
        return self.root / "characters" / f"{self._safe_id(project_id)}.json"

    def _safe_id(self, project_id: str) -> str:
        if not _ID_RE.match(project_id or ""):
            raise ProjectNotFoundError(f"invalid project id {project_id!r}", kind="not_found")
        return project_id

    async def _load_characters(self, project_id: str) -> list[CharacterRecord]:
        data = await self._read_json(self._characters_path(project_id))
        return [CharacterRecord(**item) for item in data or []]

    async def _save_characters(self, project_id: str, records: list[CharacterRecord]) -> None:
        await self._write_json(self._characters_path(project_id), [asdict(r) for r in records])

    async def _read_json(self, path: Path):
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            log.error("Could not read %s: %s", path, e)
            raise StorageError(f"could not read {path.name}: {e}", kind="read_failed") from e

    async def _write_json(self, path: Path, data) -> None:
        os.makedirs(path.parent, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, ensure_ascii=False, indent=2))
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            log.error("Could not write %s: %s", path, e)
            raise StorageError(f"could not write {path.name}: {e}", kind="write_failed") from e
