"""SQLAlchemy async implementation of the project Memory Store.

Usage
-----

- ``SqlMemoryStore.open(path)`` creates (or reopens) the SQLite database for a
  project and creates the tables.
- ``write`` returns the new revision; pass ``expected_revision`` to make the
  write conditional (``0`` means "the key must not exist yet").
- ``snapshot`` returns an immutable ``MemorySnapshot`` of one namespace.
- ``replay`` folds the history log back into a plain dict.

Transaction model
-----------------

Each write opens an ``AsyncSession``, updates the record and appends its
history row, and commits. The SQLite connection runs with WAL journaling and
``synchronous=FULL``, so a committed write is on disk when the method returns.
Any failure before the commit rolls back and leaves the previous value intact.

Writes from the same process are serialized by an internal lock because SQLite
allows a single writer; callers still coordinate through revisions only.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import event, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..core.errors import ConflictError, PersistenceFailure
from ..core.schemas import utc_now
from .models import Base, HistoryRow, MemoryRecordRow
from .schemas import (
    MEMORY_NAMESPACE,
    RUNS_NAMESPACE,
    HistoryEntry,
    HistoryOp,
    MemoryRecord,
    MemorySnapshot,
)

logger = logging.getLogger(__name__)


def create_engine(db_path: Path) -> AsyncEngine:
    """Create an async SQLite engine with durable commit settings."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", connect_args={"timeout": 30})

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")
        cursor.close()

    return engine


def _ensure_json(key: str, value: Any) -> None:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise PersistenceFailure(f"Value for '{key}' is not JSON-serializable: {exc}") from exc


def _to_history(row: HistoryRow) -> HistoryEntry:
    return HistoryEntry(
        seq=row.seq,
        op=HistoryOp(row.op),
        namespace=row.namespace,
        key=row.key,
        value=row.value,
        revision=row.revision,
        run_id=row.run_id,
        recorded_at=row.recorded_at,
    )


class SqlMemoryStore:
    """Durable key/value store with an append-only history log."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(engine, expire_on_commit=False)
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, db_path: Path) -> "SqlMemoryStore":
        """Open the store at ``db_path``, creating the database on first use."""
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        store = cls(create_engine(Path(db_path)))
        try:
            async with store._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Cannot open memory store at {db_path}: {exc}") from exc
        logger.debug("Opened memory store at %s", db_path)
        return store

    async def close(self) -> None:
        await self._engine.dispose()

    async def read(self, key: str, *, namespace: str = MEMORY_NAMESPACE) -> Optional[MemoryRecord]:
        """
        Read the current record for ``key``.

        Args:
            key: The memory key.
            namespace: Record namespace, ``memory`` unless reading checkpoints.

        Returns:
            The ``MemoryRecord`` or None when the key was never written.
        """
        try:
            async with self._session_factory() as s:
                row = await s.get(MemoryRecordRow, (namespace, key))
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Cannot read '{key}': {exc}") from exc
        if row is None:
            return None
        return MemoryRecord(
            namespace=row.namespace,
            key=row.key,
            value=row.value,
            revision=row.revision,
            updated_by=row.updated_by,
            updated_at=row.updated_at,
        )

    async def write(
        self,
        key: str,
        value: Any,
        *,
        expected_revision: Optional[int] = None,
        run_id: Optional[str] = None,
        namespace: str = MEMORY_NAMESPACE,
    ) -> int:
        """
        Write ``value`` under ``key`` and append the write to the history log.

        Args:
            key: The memory key.
            value: A JSON-compatible value.
            expected_revision: When set, the write only succeeds if the current
                revision equals it (``0`` requires the key to be absent).
            run_id: The agent run performing the write, recorded in history.
            namespace: Record namespace.

        Returns:
            The new revision number.

        Raises:
            ConflictError: The current revision differs from ``expected_revision``.
            PersistenceFailure: The write could not be committed.
        """
        return await self._put(key, value, expected_revision=expected_revision, run_id=run_id, namespace=namespace)

    async def _put(
        self,
        key: str,
        value: Any,
        *,
        expected_revision: Optional[int],
        run_id: Optional[str],
        namespace: str,
        log: bool = True,
    ) -> int:
        _ensure_json(key, value)
        async with self._write_lock:
            try:
                async with self._session_factory() as s:
                    async with s.begin():
                        row = await s.get(MemoryRecordRow, (namespace, key))
                        current = row.revision if row is not None else None
                        if expected_revision is not None and (current or 0) != expected_revision:
                            raise ConflictError(key, expected=expected_revision, actual=current)

                        now = utc_now()
                        new_revision = (current or 0) + 1
                        if row is None:
                            s.add(
                                MemoryRecordRow(
                                    namespace=namespace,
                                    key=key,
                                    value=value,
                                    revision=new_revision,
                                    updated_by=run_id,
                                    updated_at=now,
                                )
                            )
                        else:
                            row.value = value
                            row.revision = new_revision
                            row.updated_by = run_id
                            row.updated_at = now
                        if log:
                            s.add(
                                HistoryRow(
                                    op=HistoryOp.write.value,
                                    namespace=namespace,
                                    key=key,
                                    value=value,
                                    revision=new_revision,
                                    run_id=run_id,
                                    recorded_at=now,
                                )
                            )
            except ConflictError:
                logger.debug("Conflict writing %s/%s (expected=%s)", namespace, key, expected_revision)
                raise
            except (SQLAlchemyError, OSError) as exc:
                raise PersistenceFailure(f"Cannot write '{key}': {exc}") from exc
        logger.debug("Wrote %s/%s revision=%s run_id=%s", namespace, key, new_revision, run_id)
        return new_revision

    async def append_history(self, entry: HistoryEntry) -> HistoryEntry:
        """Append a free-form entry to the history log and return it with its sequence number."""
        _ensure_json(entry.key, entry.value)
        async with self._write_lock:
            try:
                async with self._session_factory() as s:
                    async with s.begin():
                        row = HistoryRow(
                            op=entry.op.value,
                            namespace=entry.namespace,
                            key=entry.key,
                            value=entry.value,
                            revision=entry.revision,
                            run_id=entry.run_id,
                            recorded_at=entry.recorded_at,
                        )
                        s.add(row)
                        await s.flush()
                        seq = row.seq
            except (SQLAlchemyError, OSError) as exc:
                raise PersistenceFailure(f"Cannot append history for '{entry.key}': {exc}") from exc
        return entry.model_copy(update={"seq": seq})

    async def snapshot(self, *, namespace: str = MEMORY_NAMESPACE) -> MemorySnapshot:
        """Return an immutable view of all current key/value pairs in ``namespace``."""
        try:
            # One read transaction so the records and ``seq`` agree.
            async with self._session_factory() as s:
                async with s.begin():
                    result = await s.execute(select(MemoryRecordRow).where(MemoryRecordRow.namespace == namespace))
                    rows = result.scalars().all()
                    seq = await s.scalar(select(func.max(HistoryRow.seq)).where(HistoryRow.namespace == namespace))
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Cannot snapshot namespace '{namespace}': {exc}") from exc
        return MemorySnapshot(
            {r.key: r.value for r in rows},
            {r.key: r.revision for r in rows},
            seq=seq or 0,
        )

    async def history(
        self,
        *,
        run_id: Optional[str] = None,
        namespace: Optional[str] = MEMORY_NAMESPACE,
        op: Optional[HistoryOp] = None,
        until_seq: Optional[int] = None,
    ) -> List[HistoryEntry]:
        """List history entries in commit order, optionally filtered."""
        stmt = select(HistoryRow)
        if until_seq is not None:
            stmt = stmt.where(HistoryRow.seq <= until_seq)
        if run_id is not None:
            stmt = stmt.where(HistoryRow.run_id == run_id)
        if namespace is not None:
            stmt = stmt.where(HistoryRow.namespace == namespace)
        if op is not None:
            stmt = stmt.where(HistoryRow.op == op.value)
        stmt = stmt.order_by(HistoryRow.seq)
        try:
            async with self._session_factory() as s:
                result = await s.execute(stmt)
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Cannot read history: {exc}") from exc
        return [_to_history(r) for r in rows]

    async def replay(
        self,
        entries: Optional[Iterable[HistoryEntry]] = None,
        *,
        namespace: str = MEMORY_NAMESPACE,
    ) -> Dict[str, Any]:
        """Fold write entries (the full log by default) into a key/value dict."""
        if entries is None:
            entries = await self.history(namespace=namespace, op=HistoryOp.write)
        state: Dict[str, Any] = {}
        for e in sorted(entries, key=lambda x: x.seq or 0):
            if e.op != HistoryOp.write or e.namespace != namespace:
                continue
            state[e.key] = e.value
        return state

    # Run checkpoints live in their own namespace so they never appear in the
    # agent-visible snapshot. Only the latest checkpoint is kept; it is not
    # appended to the history log.

    async def save_checkpoint(self, run_id: str, payload: Dict[str, Any]) -> int:
        return await self._put(
            run_id, payload, expected_revision=None, run_id=run_id, namespace=RUNS_NAMESPACE, log=False
        )

    async def load_checkpoint(self, run_id: str) -> Optional[Dict[str, Any]]:
        record = await self.read(run_id, namespace=RUNS_NAMESPACE)
        return None if record is None else dict(record.value)

    async def list_checkpoints(self) -> List[Dict[str, Any]]:
        snap = await self.snapshot(namespace=RUNS_NAMESPACE)
        return [dict(snap[k]) for k in snap]
