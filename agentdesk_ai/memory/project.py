"""Project lifecycle: one storage root and one Memory Store per project id.

A project is created the first time its id is opened and is never destroyed
implicitly; removing the storage root is an operator action.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from ..core.config import StorageConfig
from ..core.errors import PersistenceFailure
from ..core.schemas import utc_now
from .store import SqlMemoryStore

logger = logging.getLogger(__name__)

PROJECT_METADATA_FILE = "project.json"

_SAFE_ID = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class Project:
    """A project owning exactly one ``SqlMemoryStore``."""

    id: str
    root: Path
    created_at: datetime
    store: SqlMemoryStore
    scratch_dirname: str = "scratch"

    def scratch_dir(self, run_id: str) -> Path:
        """Per-run directory where sandbox jobs may write declared artifacts."""
        return self.root / self.scratch_dirname / run_id


class ProjectManager:
    """Open projects on first use and keep them open for the process lifetime."""

    def __init__(self, config: Optional[StorageConfig] = None) -> None:
        self._config = config or StorageConfig()
        self._projects: Dict[str, Project] = {}
        self._lock = asyncio.Lock()

    def default_root(self, project_id: str) -> Path:
        return Path(self._config.root) / _SAFE_ID.sub("_", project_id)

    async def open(self, project_id: str, root: Optional[Path] = None) -> Project:
        """
        Return the project for ``project_id``, creating its storage on first use.

        Args:
            project_id: Stable project identifier supplied by the host.
            root: Storage root supplied by the host workspace; defaults to
                ``<storage.root>/<project_id>``.
        """
        async with self._lock:
            existing = self._projects.get(project_id)
            if existing is not None:
                return existing

            project_root = Path(root) if root is not None else self.default_root(project_id)
            created_at = self._load_or_create_metadata(project_id, project_root)
            store = await SqlMemoryStore.open(project_root / self._config.database_filename)
            project = Project(
                id=project_id,
                root=project_root,
                created_at=created_at,
                store=store,
                scratch_dirname=self._config.scratch_dirname,
            )
            self._projects[project_id] = project
            logger.info("Opened project %s at %s", project_id, project_root)
            return project

    def get(self, project_id: str) -> Optional[Project]:
        return self._projects.get(project_id)

    async def close_all(self) -> None:
        async with self._lock:
            for project in self._projects.values():
                await project.store.close()
            self._projects.clear()

    def _load_or_create_metadata(self, project_id: str, project_root: Path) -> datetime:
        meta_path = project_root / PROJECT_METADATA_FILE
        try:
            if meta_path.exists():
                data = json.loads(meta_path.read_text(encoding="utf-8"))
                return datetime.fromisoformat(data["created_at"])
            project_root.mkdir(parents=True, exist_ok=True)
            created_at = utc_now()
            tmp_path = meta_path.with_suffix(".tmp")
            tmp_path.write_text(
                json.dumps({"id": project_id, "created_at": created_at.isoformat()}),
                encoding="utf-8",
            )
            tmp_path.replace(meta_path)
            return created_at
        except (OSError, ValueError, KeyError) as exc:
            raise PersistenceFailure(f"Cannot initialize project '{project_id}' at {project_root}: {exc}") from exc
