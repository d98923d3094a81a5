from __future__ import annotations

"""Orchestration Supervisor.

Top-level entry point for the host: accepts an intent, starts an agent run,
enforces budgets and answers status polls.

- At most one active top-level run per project; ``start`` fails with
  ``RunAlreadyActive`` instead of queuing. Delegated child runs are exempt.
- Turn budget: a step guard injected into the runtime fails the run with
  ``TurnLimitExceeded`` once ``max_turns`` Planning phases were used.
- Wall-clock budget: a watchdog aborts the run with ``RunTimeout``.
- The tool registry is locked for the lifetime of every top-level run.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from ..agent_core.runtime import AgentEngine, RunHandle, RunHooks
from ..agent_core.schemas.domain import AgentKind, AgentRun, AgentStep, RunError, RunState
from ..core.config import SupervisorConfig
from ..core.errors import RunAlreadyActive, RunNotFound, RunTimeout, TurnLimitExceeded
from ..core.schemas import BaseSchema
from ..mcp.gateway import McpGateway
from ..memory.project import ProjectManager
from ..tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class RunStatus(BaseSchema):
    """Poll result for one run: state, latest step and the most specific error."""

    run_id: str
    project_id: str
    agent: AgentKind
    state: RunState
    turns: int = 0
    step_count: int = 0
    last_step: Optional[AgentStep] = None
    last_observation: Optional[Dict[str, Any]] = None
    error: Optional[RunError] = None
    result: Optional[Any] = None
    parent_run_id: Optional[str] = None
    child_run_id: Optional[str] = None
    depth: int = 0
    children: List[str] = Field(default_factory=list)

    @classmethod
    def from_run(cls, run: AgentRun, *, child_run_id: Optional[str] = None) -> "RunStatus":
        return cls(
            run_id=run.id,
            project_id=run.project_id,
            agent=run.agent,
            state=run.state,
            turns=run.turns,
            step_count=len(run.steps),
            last_step=run.last_step.model_copy(deep=True) if run.last_step else None,
            last_observation=run.last_observation,
            error=run.error.model_copy() if run.error else None,
            result=run.result,
            parent_run_id=run.parent_run_id,
            child_run_id=child_run_id,
            depth=run.depth,
            children=[s.delegation.child_run_id for s in run.steps if s.delegation is not None],
        )


@dataclass
class _TopLevelRun:
    project_id: str
    handle: RunHandle
    watchdog: Optional["asyncio.Task[None]"] = None


class Supervisor:
    """Start, cancel, poll and resume agent runs on behalf of the host."""

    def __init__(
        self,
        *,
        engine: AgentEngine,
        projects: ProjectManager,
        registry: ToolRegistry,
        config: Optional[SupervisorConfig] = None,
        gateway: Optional[McpGateway] = None,
    ) -> None:
        self._engine = engine
        self._projects = projects
        self._registry = registry
        self._config = config or SupervisorConfig()
        self._gateway = gateway
        self._active_by_project: Dict[str, str] = {}
        self._top: Dict[str, _TopLevelRun] = {}
        self._lock = asyncio.Lock()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def projects(self) -> ProjectManager:
        return self._projects

    def active_run(self, project_id: str) -> Optional[str]:
        return self._active_by_project.get(project_id)

    async def start(
        self,
        intent: Union[str, Dict[str, Any]],
        agent_config: Union[AgentKind, str],
        project_id: str,
        *,
        project_root: Optional[Path] = None,
        max_turns: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """
        Start a top-level run for ``intent``.

        Args:
            intent: Natural-language intent, or a structured task payload.
            agent_config: ``reasoning`` or ``coding``.
            project_id: The project the run belongs to; opened on first use.
            project_root: Storage root supplied by the host workspace.
            max_turns: Override of the configured turn budget.
            timeout_seconds: Override of the configured wall-clock budget.

        Returns:
            The new run id.

        Raises:
            RunAlreadyActive: The project already has an active top-level run.
        """
        kind = AgentKind(agent_config)
        task = dict(intent) if isinstance(intent, dict) else {"intent": intent}
        async with self._lock:
            self._ensure_idle(project_id)
            project = await self._projects.open(project_id, project_root)
            run = AgentRun(project_id=project_id, agent=kind, task=task)
            hooks = self._hooks(max_turns)
            self._registry.lock()
            try:
                handle = await self._engine.start(run, project=project, hooks=hooks)
            except BaseException:
                self._registry.unlock()
                raise
            self._track(project_id, handle, timeout_seconds)
        logger.info("Supervisor started %s run %s for project %s", kind.value, run.id, project_id)
        return run.id

    async def resume(
        self,
        run_id: str,
        project_id: str,
        *,
        project_root: Optional[Path] = None,
        max_turns: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """Re-drive a checkpointed, non-terminal top-level run after a restart."""
        async with self._lock:
            self._ensure_idle(project_id)
            project = await self._projects.open(project_id, project_root)
            self._registry.lock()
            try:
                handle = await self._engine.resume(run_id, project=project, hooks=self._hooks(max_turns))
            except BaseException:
                self._registry.unlock()
                raise
            self._track(project_id, handle, timeout_seconds)
        return run_id

    def cancel(self, run_id: str) -> bool:
        """
        Cancel a run (top-level or delegated); cancellation cascades to its child.

        Returns:
            True if the run was active, False if it had already finished.

        Raises:
            RunNotFound: The run is unknown to this process.
        """
        if self._engine.get(run_id) is None:
            raise RunNotFound(run_id)
        return self._engine.cancel(run_id)

    def status(self, run_id: str) -> RunStatus:
        """Current state, latest step and most specific error of a run in this process."""
        handle = self._engine.get(run_id)
        if handle is None:
            raise RunNotFound(run_id)
        return RunStatus.from_run(handle.run, child_run_id=handle.child_id)

    async def load_status(self, run_id: str, project_id: str, *, project_root: Optional[Path] = None) -> RunStatus:
        """Status of a run from its checkpoint, for runs driven by an earlier process."""
        if self._engine.get(run_id) is not None:
            return self.status(run_id)
        project = await self._projects.open(project_id, project_root)
        payload = await project.store.load_checkpoint(run_id)
        if payload is None:
            raise RunNotFound(run_id)
        return RunStatus.from_run(AgentRun.model_validate(payload))

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> RunStatus:
        """Wait until the run is terminal (and its budgets released) and return its status."""
        handle = self._engine.get(run_id)
        if handle is None:
            raise RunNotFound(run_id)
        await asyncio.wait_for(handle.wait(), timeout=timeout)
        tracked = self._top.get(run_id)
        if tracked is not None and tracked.watchdog is not None:
            await asyncio.shield(tracked.watchdog)
        return self.status(run_id)

    async def shutdown(self) -> None:
        """Cancel active runs, close MCP sessions and project stores."""
        for run_id in list(self._top):
            self._engine.cancel(run_id)
        watchdogs = [t.watchdog for t in self._top.values() if t.watchdog is not None]
        if watchdogs:
            await asyncio.gather(*watchdogs, return_exceptions=True)
        if self._gateway is not None:
            await self._gateway.close()
        await self._projects.close_all()
        logger.info("Supervisor shut down")

    def _ensure_idle(self, project_id: str) -> None:
        active = self._active_by_project.get(project_id)
        if active is None:
            return
        handle = self._engine.get(active)
        if handle is not None and not handle.done:
            raise RunAlreadyActive(project_id, active)

    def _hooks(self, max_turns: Optional[int]) -> RunHooks:
        limit = max_turns or self._config.max_turns

        def _turn_guard(run: AgentRun) -> None:
            if run.turns >= limit:
                raise TurnLimitExceeded(
                    f"Run '{run.id}' used its {limit} planning turns",
                    details={"max_turns": limit},
                )

        return RunHooks(step_guard=_turn_guard)

    def _track(self, project_id: str, handle: RunHandle, timeout_seconds: Optional[float]) -> None:
        self._active_by_project[project_id] = handle.run_id
        tracked = _TopLevelRun(project_id=project_id, handle=handle)
        self._top[handle.run_id] = tracked
        budget = timeout_seconds or self._config.run_timeout_seconds
        tracked.watchdog = asyncio.create_task(self._watch(tracked, budget), name=f"run-watchdog:{handle.run_id}")

    async def _watch(self, tracked: _TopLevelRun, budget: float) -> None:
        handle = tracked.handle
        try:
            await asyncio.wait_for(handle.wait(), timeout=budget)
        except asyncio.TimeoutError:
            self._engine.abort(
                handle.run_id,
                RunTimeout(f"Run '{handle.run_id}' exceeded {budget}s", details={"timeout_seconds": budget}),
            )
            await handle.wait()
        finally:
            if self._active_by_project.get(tracked.project_id) == handle.run_id:
                del self._active_by_project[tracked.project_id]
            self._registry.unlock()
            logger.info("Run %s released (%s)", handle.run_id, handle.run.state.value)
