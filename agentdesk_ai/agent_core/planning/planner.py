from __future__ import annotations

"""Planning capability.

A planner turns a ``PlanningContext`` into exactly one decision:

- ``ToolCallsDecision``: tool calls (and optional memory writes) to act on,
- ``DelegateDecision``: hand a sub-task to the other agent configuration,
- ``FinishDecision``: end the run with a result.

Planners never execute tools or touch memory; the runtime does both.

Two implementations ship with the core:

- ``ScriptedPlanner``: deterministic, driven by a callable or a sequence of
  decisions. Used offline and in tests.
- ``PydanticAIPlanner``: asks a Pydantic AI ``Agent`` for a structured
  decision. The model is supplied by the host; no provider is configured here.
"""

import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from pydantic_ai import Agent

from ...core.errors import PlanningFailure
from .decisions import (
    Decision,
    DelegateDecision,
    FinishDecision,
    PlanningContext,
    ToolCallsDecision,
    normalize_decision,
)

logger = logging.getLogger(__name__)

ScriptEntry = Union[Decision, Dict[str, Any], Callable[[PlanningContext], Any]]


class Planner(Protocol):
    async def plan(self, ctx: PlanningContext) -> Decision: ...


class ScriptedPlanner:
    """Planner that replays scripted decisions.

    ``script`` is either one callable invoked for every Planning phase, or a
    sequence consumed one entry per phase (per run). Entries may be decision
    models, their dict form, or callables (sync or async) taking the context.
    When a sequence runs out the planner gives up with a failed
    ``FinishDecision``.
    """

    def __init__(self, script: Union[Callable[[PlanningContext], Any], Sequence[ScriptEntry]]) -> None:
        self._fn: Optional[Callable[[PlanningContext], Any]] = script if callable(script) else None
        self._entries: List[ScriptEntry] = [] if callable(script) else list(script)
        self._cursor: Dict[str, int] = {}

    async def plan(self, ctx: PlanningContext) -> Decision:
        if self._fn is not None:
            return await self._resolve(self._fn, ctx)

        pos = self._cursor.get(ctx.run.id, 0)
        if pos >= len(self._entries):
            return FinishDecision(succeeded=False, reason="script exhausted")
        self._cursor[ctx.run.id] = pos + 1
        entry = self._entries[pos]
        if callable(entry):
            return await self._resolve(entry, ctx)
        return normalize_decision(entry)

    async def _resolve(self, fn: Callable[[PlanningContext], Any], ctx: PlanningContext) -> Decision:
        out = fn(ctx)
        if inspect.isawaitable(out):
            out = await out
        return normalize_decision(out)


_SYSTEM_PROMPT = (
    "You are the {agent} agent of a desktop research assistant. "
    "At each turn choose exactly one decision: call tools (only those listed), "
    "delegate a self-contained sub-task to the {other} agent, or finish with a result. "
    "Use memory_writes to persist facts you will need later."
)


class PydanticAIPlanner:
    """Planner backed by a Pydantic AI agent with structured decision output."""

    def __init__(self, model: Any, *, instructions: Optional[str] = None) -> None:
        """
        Initialize the planner.

        Args:
            model: A Pydantic AI model instance or model name supplied by the host.
            instructions: Extra system instructions appended to the default prompt.
        """
        self._model = model
        self._instructions = instructions

    def _agent(self, ctx: PlanningContext) -> Agent:
        prompt = _SYSTEM_PROMPT.format(agent=ctx.run.agent.value, other=ctx.run.agent.other.value)
        if self._instructions:
            prompt = f"{prompt}\n\n{self._instructions}"
        return Agent(
            self._model,
            output_type=[ToolCallsDecision, DelegateDecision, FinishDecision],
            system_prompt=prompt,
        )

    async def plan(self, ctx: PlanningContext) -> Decision:
        payload = {
            "task": ctx.task,
            "turn": ctx.turn,
            "memory": dict(ctx.memory),
            "last_observations": ctx.last_observations,
            "tools": [t.summary() for t in ctx.tools],
        }
        try:
            result = await self._agent(ctx).run(json.dumps(payload, default=str))
        except Exception as exc:
            logger.warning("Planner model call failed for run %s: %s", ctx.run.id, exc)
            raise PlanningFailure(f"planner model call failed: {exc}") from exc
        return normalize_decision(result.output)
