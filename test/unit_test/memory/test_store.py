"""Tests for the SQLite-backed memory store and project lifecycle."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from agentdesk_ai.core.config import StorageConfig
from agentdesk_ai.core.errors import ConflictError, PersistenceFailure
from agentdesk_ai.memory import (
    RUNS_NAMESPACE,
    HistoryEntry,
    HistoryOp,
    Project,
    ProjectManager,
    SqlMemoryStore,
)


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_read_missing_key_returns_none(self, project: Project) -> None:
        assert await project.store.read("nope") is None

    @pytest.mark.asyncio
    async def test_write_returns_increasing_revisions(self, project: Project) -> None:
        store = project.store
        assert await store.write("doc:1", {"title": "a"}) == 1
        assert await store.write("doc:1", {"title": "b"}, run_id="r1") == 2

        record = await store.read("doc:1")
        assert record is not None
        assert record.value == {"title": "b"}
        assert record.revision == 2
        assert record.updated_by == "r1"

    @pytest.mark.asyncio
    async def test_conditional_write_conflict_keeps_prior_value(self, project: Project) -> None:
        store = project.store
        await store.write("k", "v1")

        with pytest.raises(ConflictError) as exc_info:
            await store.write("k", "v2", expected_revision=5)

        assert exc_info.value.details["actual"] == 1
        record = await store.read("k")
        assert record.value == "v1"
        assert record.revision == 1

    @pytest.mark.asyncio
    async def test_expected_revision_zero_requires_absent_key(self, project: Project) -> None:
        store = project.store
        assert await store.write("fresh", 1, expected_revision=0) == 1
        with pytest.raises(ConflictError):
            await store.write("fresh", 2, expected_revision=0)

    @pytest.mark.asyncio
    async def test_non_json_value_is_rejected(self, project: Project) -> None:
        with pytest.raises(PersistenceFailure):
            await project.store.write("bad", {"x": object()})
        assert await project.store.read("bad") is None

    @pytest.mark.asyncio
    async def test_unconditional_concurrent_writes_last_writer_wins(self, project: Project) -> None:
        store = project.store
        revisions = await asyncio.gather(*(store.write("shared", i) for i in range(10)))

        assert sorted(revisions) == list(range(1, 11))
        record = await store.read("shared")
        assert record.revision == 10
        history = await store.history(op=HistoryOp.write)
        assert history[-1].value == record.value


class TestSnapshotAndHistory:
    @pytest.mark.asyncio
    async def test_snapshot_is_immutable_copy(self, project: Project) -> None:
        store = project.store
        await store.write("a", {"items": [1]})
        snap = await store.snapshot()

        copy = snap["a"]
        copy["items"].append(2)
        await store.write("a", {"items": [9]})

        assert snap["a"] == {"items": [1]}
        assert snap.revision("a") == 1
        assert snap.seq >= 1

    @pytest.mark.asyncio
    async def test_checkpoints_are_hidden_from_memory_snapshot(self, project: Project) -> None:
        store = project.store
        await store.write("visible", True)
        await store.save_checkpoint("run-1", {"id": "run-1", "state": "planning"})

        snap = await store.snapshot()
        assert list(snap) == ["visible"]
        assert await store.load_checkpoint("run-1") == {"id": "run-1", "state": "planning"}
        assert await store.list_checkpoints() == [{"id": "run-1", "state": "planning"}]
        assert (await store.snapshot(namespace=RUNS_NAMESPACE)).revision("run-1") == 1

    @pytest.mark.asyncio
    async def test_checkpoints_keep_only_the_latest_payload(self, project: Project) -> None:
        store = project.store
        for step in range(5):
            await store.save_checkpoint("run-1", {"id": "run-1", "steps": list(range(step))})

        assert await store.load_checkpoint("run-1") == {"id": "run-1", "steps": [0, 1, 2, 3]}
        assert (await store.snapshot(namespace=RUNS_NAMESPACE)).revision("run-1") == 5
        assert await store.history(namespace=RUNS_NAMESPACE) == []
        assert await store.history(namespace=None) == []

    @pytest.mark.asyncio
    async def test_replay_of_history_equals_snapshot(self, project: Project) -> None:
        store = project.store
        await store.write("x", 1, run_id="r1")
        await store.write("y", "two", run_id="r1")
        await store.write("x", 3, run_id="r2")
        await store.append_history(HistoryEntry(key="note", value="audit only", run_id="r2"))

        assert await store.replay() == (await store.snapshot()).to_dict()

    @pytest.mark.asyncio
    async def test_replay_until_snapshot_seq_rebuilds_that_snapshot(self, project: Project) -> None:
        store = project.store
        await store.write("x", 1)
        await store.write("y", 2)
        earlier = await store.snapshot()
        await store.write("x", 100)
        await store.write("z", 3)

        entries = await store.history(until_seq=earlier.seq, op=HistoryOp.write)
        assert await store.replay(entries) == earlier.to_dict()

    @pytest.mark.asyncio
    async def test_history_filters_by_run(self, project: Project) -> None:
        store = project.store
        await store.write("a", 1, run_id="r1")
        await store.write("b", 2, run_id="r2")

        entries = await store.history(run_id="r2")
        assert [e.key for e in entries] == ["b"]
        assert entries[0].seq is not None


class TestDurability:
    @pytest.mark.asyncio
    async def test_failed_commit_keeps_prior_value(self, project: Project) -> None:
        store = project.store
        await store.write("k", {"v": 1}, run_id="r1")

        def _disk_error(session) -> None:
            raise OperationalError("COMMIT", None, Exception("disk I/O error"))

        event.listen(Session, "before_commit", _disk_error)
        try:
            with pytest.raises(PersistenceFailure):
                await store.write("k", {"v": 2}, run_id="r2")
            with pytest.raises(PersistenceFailure):
                await store.write("new", "x")
        finally:
            event.remove(Session, "before_commit", _disk_error)

        record = await store.read("k")
        assert record.value == {"v": 1}
        assert record.revision == 1
        assert record.updated_by == "r1"
        assert await store.read("new") is None
        assert [e.value for e in await store.history()] == [{"v": 1}]
        assert await store.write("k", {"v": 3}) == 2

    @pytest.mark.asyncio
    async def test_committed_writes_survive_reopen(self, tmp_path: Path) -> None:
        db = tmp_path / "p" / "memory.db"
        store = await SqlMemoryStore.open(db)
        await store.write("k", {"v": 1})
        await store.close()

        reopened = await SqlMemoryStore.open(db)
        try:
            record = await reopened.read("k")
            assert record.value == {"v": 1}
            assert record.revision == 1
        finally:
            await reopened.close()


class TestProjectManager:
    @pytest.mark.asyncio
    async def test_open_is_idempotent_and_creates_metadata(self, tmp_path: Path) -> None:
        manager = ProjectManager(StorageConfig(root=tmp_path))
        try:
            first = await manager.open("acme")
            second = await manager.open("acme")
            assert first is second
            assert (first.root / "project.json").is_file()
            assert first.scratch_dir("r1") == first.root / "scratch" / "r1"
        finally:
            await manager.close_all()

    @pytest.mark.asyncio
    async def test_creation_time_is_stable_across_managers(self, tmp_path: Path) -> None:
        manager = ProjectManager(StorageConfig(root=tmp_path))
        created = (await manager.open("acme")).created_at
        await manager.close_all()

        again = ProjectManager(StorageConfig(root=tmp_path))
        try:
            assert (await again.open("acme")).created_at == created
        finally:
            await again.close_all()

    @pytest.mark.asyncio
    async def test_host_supplied_root(self, tmp_path: Path) -> None:
        manager = ProjectManager(StorageConfig(root=tmp_path / "default"))
        try:
            project = await manager.open("acme", tmp_path / "workspace")
            assert project.root == tmp_path / "workspace"
            assert (tmp_path / "workspace" / "memory.db").exists()
        finally:
            await manager.close_all()
