from __future__ import annotations

"""Runtime dependency bundle, run handles and LangGraph state types.

- ``EngineDeps`` collects the collaborators the engine needs.
- ``RunHooks`` carries the budget policy injected by the Supervisor.
- ``RunHandle`` is the in-process record of one driven run; only its driver
  task mutates ``run``.
- ``_GraphState`` is the small state passed between LangGraph nodes. The run
  itself lives on the handle and is checkpointed to the Memory Store.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, List, NotRequired, Optional, Required, Set, TypedDict

from ...core.errors import AgentDeskError
from ...memory.project import Project
from ...sandbox.executor import SandboxExecutor
from ...tools.base import ToolCall, ToolResult
from ...tools.dispatcher import ToolDispatcher
from ..agents import AgentRegistry
from ..schemas.domain import AgentRun, AgentStep


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``AgentEngine``."""

    dispatcher: ToolDispatcher
    agents: AgentRegistry
    executor: Optional[SandboxExecutor] = None


@dataclass(frozen=True)
class RunHooks:
    """Budget and progress hooks.

    ``step_guard`` runs at the start of every Planning phase and may raise
    (e.g. ``TurnLimitExceeded``) to fail the run. ``on_update`` is called after
    every state change.
    """

    step_guard: Optional[Callable[[AgentRun], None]] = None
    on_update: Optional[Callable[[AgentRun], None]] = None


@dataclass
class RunHandle:
    run: AgentRun
    project: Project
    hooks: RunHooks = field(default_factory=RunHooks)
    task: Optional["asyncio.Task[AgentRun]"] = None
    started: bool = False
    child_id: Optional[str] = None
    cancel_requested: bool = False
    abort_error: Optional[AgentDeskError] = None
    written_keys: Set[str] = field(default_factory=set)

    decision: Any = None
    pending: Optional[AgentStep] = None
    calls: List[ToolCall] = field(default_factory=list)
    results: List[ToolResult] = field(default_factory=list)

    @property
    def run_id(self) -> str:
        return self.run.id

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def wait(self) -> AgentRun:
        """Wait for the run to reach a terminal state without cancelling its driver."""
        assert self.task is not None
        return await asyncio.shield(self.task)


class _GraphState(TypedDict):
    """Mutable LangGraph state for a single driven run.

    - ``run_id``: the driven run.
    - ``route``: set by the planning node to pick the next phase.
    """

    run_id: Required[str]
    route: NotRequired[str]
