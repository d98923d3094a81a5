from __future__ import annotations

import copy
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional

from pydantic import Field

from ..core.schemas import BaseSchema, utc_now

MEMORY_NAMESPACE = "memory"
RUNS_NAMESPACE = "runs"


class HistoryOp(str, Enum):
    write = "write"
    audit = "audit"


class MemoryRecord(BaseSchema):
    namespace: str = MEMORY_NAMESPACE
    key: str
    value: Any = None
    revision: int = Field(ge=1)
    updated_by: Optional[str] = None
    updated_at: datetime = Field(default_factory=utc_now)


class HistoryEntry(BaseSchema):
    seq: Optional[int] = None
    op: HistoryOp = HistoryOp.audit
    namespace: str = MEMORY_NAMESPACE
    key: str
    value: Any = None
    revision: Optional[int] = None
    run_id: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utc_now)


class MemorySnapshot(Mapping[str, Any]):
    """Immutable view of every key/value pair in one namespace.

    Values are deep-copied on construction and on access, so callers can never
    mutate the store through a snapshot.
    ``seq`` is the last history sequence number the snapshot includes.
    """

    def __init__(self, values: Mapping[str, Any], revisions: Mapping[str, int], seq: int = 0) -> None:
        self._values: Dict[str, Any] = copy.deepcopy(dict(values))
        self._revisions: Dict[str, int] = dict(revisions)
        self.seq = seq

    def __getitem__(self, key: str) -> Any:
        return copy.deepcopy(self._values[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def revision(self, key: str) -> Optional[int]:
        return self._revisions.get(key)

    @property
    def revisions(self) -> Dict[str, int]:
        return dict(self._revisions)

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._values)

    def __repr__(self) -> str:
        return f"MemorySnapshot(seq={self.seq}, keys={sorted(self._values)})"
