from __future__ import annotations

"""SQLAlchemy ORM models for project memory.

These ORM models define the SQL schema used by ``SqlMemoryStore``.

Design
------

- ``MemoryRecordRow`` holds the current value and revision per
  ``(namespace, key)``; writes are last-writer-wins guarded by the revision.
- ``HistoryRow`` is the append-only audit log. Every successful write adds one
  row in the same transaction, so replaying the log in ``seq`` order rebuilds
  the current records.

Table names are prefixed with ``ad_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class MemoryRecordRow(Base):
    """Row model for ``ad_memory_records``."""

    __tablename__ = "ad_memory_records"

    namespace: Mapped[str] = mapped_column(String(32), primary_key=True)
    key: Mapped[str] = mapped_column(String(512), primary_key=True)

    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    revision: Mapped[int] = mapped_column(Integer)

    updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class HistoryRow(Base):
    """Row model for ``ad_memory_history``.

    Append-only. ``op`` is ``write`` for value changes and ``audit`` for
    free-form entries appended through ``append_history``.
    """

    __tablename__ = "ad_memory_history"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    op: Mapped[str] = mapped_column(String(16))

    namespace: Mapped[str] = mapped_column(String(32), index=True)
    key: Mapped[str] = mapped_column(String(512))
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    revision: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    run_id: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
