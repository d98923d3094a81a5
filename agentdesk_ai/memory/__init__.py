"""Durable per-project memory.

 - ``SqlMemoryStore``: key/value records with revisions plus an append-only
   history log, backed by SQLite through SQLAlchemy's async ORM.
 - ``ProjectManager``/``Project``: one storage root and one store per project.
 """

from .project import Project, ProjectManager
from .schemas import (
    MEMORY_NAMESPACE,
    RUNS_NAMESPACE,
    HistoryEntry,
    HistoryOp,
    MemoryRecord,
    MemorySnapshot,
)
from .store import SqlMemoryStore

__all__ = [
    "MEMORY_NAMESPACE",
    "RUNS_NAMESPACE",
    "HistoryEntry",
    "HistoryOp",
    "MemoryRecord",
    "MemorySnapshot",
    "Project",
    "ProjectManager",
    "SqlMemoryStore",
]
