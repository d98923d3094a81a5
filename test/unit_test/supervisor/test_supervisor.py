"""Tests for the Supervisor: admission, budgets, cancellation and status."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

import pytest
import pytest_asyncio

from agentdesk_ai.agent_core import AgentConfiguration, AgentEngine, AgentKind, AgentRegistry, EngineDeps, RunState
from agentdesk_ai.agent_core.planning import FinishDecision, PlanningContext, ScriptedPlanner, ToolCallsDecision
from agentdesk_ai.core.config import AgentDeskSettings, DispatcherConfig, SupervisorConfig
from agentdesk_ai.core.errors import ErrorKind, RegistryLocked, RunAlreadyActive, RunNotFound
from agentdesk_ai.memory.project import ProjectManager
from agentdesk_ai.supervisor import Supervisor, build_supervisor
from agentdesk_ai.tools import LocalHandler, ToolCall, ToolDescriptor, ToolDispatcher, ToolRegistry


def _plan(ctx: PlanningContext):
    """Finish when the intent says so, otherwise block on the ``wait`` tool."""
    intent = ctx.task.get("intent")
    if intent == "finish":
        return FinishDecision(result="done")
    if intent == "loop":
        return ToolCallsDecision(calls=[ToolCall(tool="noop")])
    if ctx.steps:
        return FinishDecision(result="released")
    return ToolCallsDecision(calls=[ToolCall(tool="wait")])


class _Gate:
    def __init__(self) -> None:
        self.event = asyncio.Event()

    async def wait(self, ctx, args):
        await self.event.wait()
        return {"released": True}


async def _noop(ctx, args):
    return {}


def _supervisor(settings: AgentDeskSettings, gate: _Gate, config: Optional[SupervisorConfig] = None) -> Supervisor:
    registry = ToolRegistry()
    registry.register(ToolDescriptor(name="wait", handler=LocalHandler(fn=gate.wait)))
    registry.register(ToolDescriptor(name="noop", handler=LocalHandler(fn=_noop)))
    dispatcher = ToolDispatcher(registry, config=DispatcherConfig(transport_retry_backoff_seconds=0))
    agents = AgentRegistry(
        [
            AgentConfiguration(kind=AgentKind.reasoning, planner=ScriptedPlanner(_plan)),
            AgentConfiguration(kind=AgentKind.coding, planner=ScriptedPlanner(_plan)),
        ]
    )
    engine = AgentEngine(deps=EngineDeps(dispatcher=dispatcher, agents=agents), config=settings.runtime)
    return Supervisor(
        engine=engine,
        projects=ProjectManager(settings.storage),
        registry=registry,
        config=config or settings.supervisor,
    )


@pytest.fixture
def gate() -> _Gate:
    return _Gate()


@pytest_asyncio.fixture
async def supervisor(settings: AgentDeskSettings, gate: _Gate) -> AsyncIterator[Supervisor]:
    sup = _supervisor(settings, gate)
    yield sup
    gate.event.set()
    await sup.shutdown()


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestStart:
    @pytest.mark.asyncio
    async def test_run_to_completion(self, supervisor: Supervisor) -> None:
        run_id = await supervisor.start("finish", "reasoning", "p1")

        status = await supervisor.wait(run_id, timeout=5)

        assert status.state == RunState.succeeded
        assert status.result == "done"
        assert status.project_id == "p1"
        assert status.step_count == 1
        assert supervisor.active_run("p1") is None

    @pytest.mark.asyncio
    async def test_structured_intent_becomes_the_task(self, supervisor: Supervisor) -> None:
        run_id = await supervisor.start({"intent": "finish", "source": "host"}, AgentKind.coding, "p1")

        status = await supervisor.wait(run_id, timeout=5)

        assert status.agent == AgentKind.coding
        assert status.state == RunState.succeeded

    @pytest.mark.asyncio
    async def test_one_active_run_per_project(self, supervisor: Supervisor, gate: _Gate) -> None:
        first = await supervisor.start("block", "reasoning", "p1")

        with pytest.raises(RunAlreadyActive) as exc_info:
            await supervisor.start("finish", "reasoning", "p1")
        assert exc_info.value.run_id == first

        other = await supervisor.start("finish", "reasoning", "p2")
        assert (await supervisor.wait(other, timeout=5)).state == RunState.succeeded

        gate.event.set()
        assert (await supervisor.wait(first, timeout=5)).result == "released"
        second = await supervisor.start("finish", "reasoning", "p1")
        assert (await supervisor.wait(second, timeout=5)).state == RunState.succeeded

    @pytest.mark.asyncio
    async def test_registry_is_locked_while_running(self, supervisor: Supervisor, gate: _Gate) -> None:
        run_id = await supervisor.start("block", "reasoning", "p1")

        assert supervisor.registry.locked
        with pytest.raises(RegistryLocked):
            supervisor.registry.register(ToolDescriptor(name="late", handler=LocalHandler(fn=_noop)))

        gate.event.set()
        await supervisor.wait(run_id, timeout=5)
        assert not supervisor.registry.locked


class TestBudgets:
    @pytest.mark.asyncio
    async def test_turn_limit(self, supervisor: Supervisor) -> None:
        run_id = await supervisor.start("loop", "reasoning", "p1", max_turns=3)

        status = await supervisor.wait(run_id, timeout=5)

        assert status.state == RunState.failed
        assert status.error.kind == ErrorKind.turn_limit_exceeded
        assert status.turns == 3

    @pytest.mark.asyncio
    async def test_configured_turn_limit(self, settings: AgentDeskSettings, gate: _Gate) -> None:
        sup = _supervisor(settings, gate, SupervisorConfig(max_turns=2))
        try:
            run_id = await sup.start("loop", "reasoning", "p1")
            status = await sup.wait(run_id, timeout=5)
        finally:
            await sup.shutdown()

        assert status.error.kind == ErrorKind.turn_limit_exceeded
        assert status.turns == 2

    @pytest.mark.asyncio
    async def test_wall_clock_timeout(self, supervisor: Supervisor) -> None:
        run_id = await supervisor.start("block", "reasoning", "p1", timeout_seconds=0.2)

        status = await supervisor.wait(run_id, timeout=5)

        assert status.state == RunState.failed
        assert status.error.kind == ErrorKind.run_timeout
        assert supervisor.active_run("p1") is None
        assert not supervisor.registry.locked


class TestCancelAndStatus:
    @pytest.mark.asyncio
    async def test_cancel(self, supervisor: Supervisor) -> None:
        run_id = await supervisor.start("block", "reasoning", "p1")
        await _wait_for(lambda: supervisor.status(run_id).state == RunState.acting)

        assert supervisor.cancel(run_id) is True
        status = await supervisor.wait(run_id, timeout=5)

        assert status.state == RunState.cancelled
        assert status.error.kind == ErrorKind.cancelled
        assert supervisor.cancel(run_id) is False

    @pytest.mark.asyncio
    async def test_unknown_run(self, supervisor: Supervisor) -> None:
        with pytest.raises(RunNotFound):
            supervisor.cancel("missing")
        with pytest.raises(RunNotFound):
            supervisor.status("missing")
        with pytest.raises(RunNotFound):
            await supervisor.load_status("missing", "p1")

    @pytest.mark.asyncio
    async def test_status_reports_last_observation(self, supervisor: Supervisor, gate: _Gate) -> None:
        run_id = await supervisor.start("block", "reasoning", "p1")
        gate.event.set()

        status = await supervisor.wait(run_id, timeout=5)

        assert status.last_step.decision == "finish"
        assert status.last_observation["status"] == "Succeeded"
        assert status.last_observation["tool"] == "wait"

    @pytest.mark.asyncio
    async def test_status_from_checkpoint_in_a_new_process(self, settings: AgentDeskSettings, gate: _Gate) -> None:
        first = _supervisor(settings, gate)
        run_id = await first.start("finish", "reasoning", "p1")
        await first.wait(run_id, timeout=5)
        await first.shutdown()

        second = _supervisor(settings, gate)
        try:
            status = await second.load_status(run_id, "p1")
        finally:
            await second.shutdown()

        assert status.state == RunState.succeeded
        assert status.result == "done"


class TestResumeAndShutdown:
    @pytest.mark.asyncio
    async def test_resume_interrupted_run(self, settings: AgentDeskSettings) -> None:
        gate = _Gate()
        first = _supervisor(settings, gate)
        run_id = await first.start("block", "reasoning", "p1")
        await _wait_for(lambda: first.status(run_id).state == RunState.acting)
        project = first.projects.get("p1")
        saved = await project.store.load_checkpoint(run_id)
        await first.shutdown()
        # The first process died before recording a terminal state.
        reopened = _supervisor(settings, gate)
        store = (await reopened.projects.open("p1")).store
        await store.save_checkpoint(run_id, saved)

        gate.event.set()
        try:
            assert await reopened.resume(run_id, "p1") == run_id
            status = await reopened.wait(run_id, timeout=5)
        finally:
            await reopened.shutdown()

        assert status.state == RunState.succeeded
        assert status.result == "released"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_active_runs(self, settings: AgentDeskSettings, gate: _Gate) -> None:
        sup = _supervisor(settings, gate)
        run_id = await sup.start("block", "reasoning", "p1")

        await sup.shutdown()

        assert sup.status(run_id).state == RunState.cancelled
        assert not sup.registry.locked


class TestBuildSupervisor:
    @pytest.mark.asyncio
    async def test_builds_with_builtin_tools(self, settings: AgentDeskSettings) -> None:
        sup = await build_supervisor(
            settings,
            reasoning_planner=ScriptedPlanner([FinishDecision(result="ok")]),
            coding_planner=ScriptedPlanner([]),
            mcp_endpoints=[],
        )
        try:
            assert [d.name for d in sup.registry.list()] == ["memory_read", "run_script", "web_fetch"]
            run_id = await sup.start("hello", "reasoning", "p1")
            status = await sup.wait(run_id, timeout=5)
        finally:
            await sup.shutdown()

        assert status.result == "ok"
