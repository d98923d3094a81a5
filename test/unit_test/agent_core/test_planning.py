from __future__ import annotations

from typing import List

import pytest
from pydantic import ValidationError
from pydantic_ai.models.function import AgentInfo, FunctionModel

from agentdesk_ai.agent_core import AgentKind, AgentRun, AgentStep
from agentdesk_ai.agent_core.planning import (
    DelegateDecision,
    FinishDecision,
    PlanningContext,
    PydanticAIPlanner,
    ScriptedPlanner,
    ToolCallsDecision,
    normalize_decision,
)
from agentdesk_ai.core.config import PlannerConfig
from agentdesk_ai.core.errors import PlanningFailure
from agentdesk_ai.supervisor import planner_from_config


def _ctx(run: AgentRun, steps: List[AgentStep] = ()) -> PlanningContext:
    return PlanningContext(run=run, task=dict(run.task), memory={}, steps=list(steps))


class TestDecisions:
    def test_normalize_dict_forms(self) -> None:
        calls = normalize_decision({"kind": "tool_calls", "calls": [{"tool": "web_fetch", "args": {"url": "x"}}]})
        delegate = normalize_decision({"kind": "delegate", "agent": "coding", "task": {"script": "ls"}})
        finish = normalize_decision({"kind": "finish", "result": 1})

        assert isinstance(calls, ToolCallsDecision)
        assert calls.calls[0].tool == "web_fetch"
        assert isinstance(delegate, DelegateDecision)
        assert delegate.agent == AgentKind.coding
        assert isinstance(finish, FinishDecision)
        assert finish.succeeded

    def test_models_pass_through(self) -> None:
        decision = FinishDecision(result="x")
        assert normalize_decision(decision) is decision

    def test_empty_tool_calls_decision_is_invalid(self) -> None:
        with pytest.raises(ValidationError):
            ToolCallsDecision()

    def test_unknown_kind_is_invalid(self) -> None:
        with pytest.raises(ValidationError):
            normalize_decision({"kind": "sleep"})

    def test_negative_expected_revision_is_invalid(self) -> None:
        with pytest.raises(ValidationError):
            normalize_decision({"kind": "tool_calls", "memory_writes": [{"key": "k", "expected_revision": -1}]})

    def test_context_helpers(self) -> None:
        run = AgentRun(project_id="p", agent=AgentKind.reasoning)
        step = AgentStep(index=0, decision="tool_calls", observations=[{"status": "Succeeded"}])
        ctx = _ctx(run, [step])

        assert ctx.turn == 1
        assert ctx.last_step is step
        assert ctx.last_observations == [{"status": "Succeeded"}]
        assert _ctx(run).last_observations == []


class TestScriptedPlanner:
    @pytest.mark.asyncio
    async def test_sequence_is_consumed_per_run(self) -> None:
        planner = ScriptedPlanner([{"kind": "finish", "result": "first"}])
        a = AgentRun(project_id="p", agent=AgentKind.reasoning)
        b = AgentRun(project_id="p", agent=AgentKind.reasoning)

        assert (await planner.plan(_ctx(a))).result == "first"
        assert (await planner.plan(_ctx(b))).result == "first"
        exhausted = await planner.plan(_ctx(a))
        assert not exhausted.succeeded
        assert exhausted.reason == "script exhausted"

    @pytest.mark.asyncio
    async def test_async_callable_entries(self) -> None:
        async def _entry(ctx: PlanningContext):
            return {"kind": "finish", "result": ctx.task["n"] * 2}

        planner = ScriptedPlanner([_entry])
        run = AgentRun(project_id="p", agent=AgentKind.coding, task={"n": 21})

        assert (await planner.plan(_ctx(run))).result == 42


class TestPydanticAIPlanner:
    @pytest.mark.asyncio
    async def test_model_failure_is_planning_failure(self) -> None:
        def _down(messages, info: AgentInfo):
            raise RuntimeError("provider unavailable")

        planner = PydanticAIPlanner(FunctionModel(_down))
        run = AgentRun(project_id="p", agent=AgentKind.reasoning, task={"intent": "x"})

        with pytest.raises(PlanningFailure):
            await planner.plan(_ctx(run))

    @pytest.mark.asyncio
    async def test_unconfigured_model_gives_up(self) -> None:
        planner = planner_from_config(PlannerConfig())
        run = AgentRun(project_id="p", agent=AgentKind.reasoning)

        decision = await planner.plan(_ctx(run))

        assert isinstance(decision, FinishDecision)
        assert not decision.succeeded

    def test_configured_model(self) -> None:
        assert isinstance(planner_from_config(PlannerConfig(model="test")), PydanticAIPlanner)
        coding = planner_from_config(PlannerConfig(model="test", coding_model="other"), coding=True)
        assert isinstance(coding, PydanticAIPlanner)
