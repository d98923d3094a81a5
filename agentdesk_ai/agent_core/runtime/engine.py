from __future__ import annotations

"""LangGraph runtime engine.

``AgentEngine`` drives Agent Runs through the plan/act/observe state machine
shared by every agent configuration.

Execution model
---------------

- Each run has exactly one driver: an asyncio task running a compiled
  LangGraph ``StateGraph``. Only that task mutates the run.
- ``plan`` asks the configuration's planner for one decision.
- ``act`` dispatches the decision's tool calls. Independent calls run
  concurrently up to the fan-out ceiling; a call waits for the calls it
  ``depends_on``. Unknown or cyclic dependencies fail as observations.
- ``delegate`` starts a child run of the other configuration with only the
  passed sub-task and suspends on the child's driver task.
- ``observe`` folds results into memory (``store_as``, explicit
  ``memory_writes``), appends the step and checkpoints the run.
- ``finish`` records the result and the terminal state.

Failure policy
--------------

Per-call and per-delegation failures become observations and the run
continues. ``PersistenceFailure``, invariant violations and budget errors
raised by ``RunHooks.step_guard`` end the run in ``failed``. Cancellation
(``cancel``) ends it in ``cancelled`` and cascades to the active child run and
to the run's in-flight sandbox jobs. ``abort`` stops a run with a given error
(used for the wall-clock budget).

Resume
------

Checkpoints hold only completed steps, so ``resume`` re-drives a
non-terminal run from ``planning`` after a restart.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from langgraph.graph import END, StateGraph

from ...core.config import RuntimeConfig
from ...core.errors import (
    AgentDeskError,
    AgentGaveUp,
    ConflictError,
    DelegationDepthExceeded,
    ErrorKind,
    InternalError,
    InvalidStateTransition,
    PlanningFailure,
    RunNotFound,
)
from ...core.schemas import utc_now
from ...memory.project import Project
from ...memory.schemas import MemorySnapshot
from ...tools.base import ToolCall, ToolDescriptor, ToolResult
from ..agents import AgentConfiguration
from ..planning.decisions import (
    DelegateDecision,
    FinishDecision,
    PlanningContext,
    ToolCallsDecision,
)
from ..schemas.domain import (
    AgentRun,
    AgentStep,
    CommittedWrite,
    DelegationRef,
    RunError,
    RunState,
)
from .models import EngineDeps, RunHandle, RunHooks, _GraphState

logger = logging.getLogger(__name__)


class AgentEngine:
    """Drive agent runs, their delegations and their cancellation."""

    def __init__(self, *, deps: EngineDeps, config: Optional[RuntimeConfig] = None) -> None:
        """
        Initialize the AgentEngine.

        Args:
            deps: The runtime collaborators (dispatcher, agent configurations, executor).
            config: Fan-out, delegation and retry settings.
        """
        self._deps = deps
        self._config = config or RuntimeConfig()
        self._runs: Dict[str, RunHandle] = {}
        self._graph = self._build_graph()

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("plan", self._node_plan)
        g.add_node("act", self._node_act)
        g.add_node("delegate", self._node_delegate)
        g.add_node("observe", self._node_observe)
        g.add_node("finish", self._node_finish)

        g.set_entry_point("plan")
        g.add_conditional_edges(
            "plan",
            self._route_after_plan,
            {
                "act": "act",
                "delegate": "delegate",
                "finish": "finish",
            },
        )
        g.add_edge("act", "observe")
        g.add_edge("delegate", "observe")
        g.add_edge("observe", "plan")
        g.add_edge("finish", END)
        return g.compile()

    # Run lifecycle

    def get(self, run_id: str) -> Optional[RunHandle]:
        return self._runs.get(run_id)

    def active_runs(self) -> List[RunHandle]:
        return [h for h in self._runs.values() if not h.done]

    async def start(self, run: AgentRun, *, project: Project, hooks: Optional[RunHooks] = None) -> RunHandle:
        """Checkpoint a new run and start its driver task."""
        if run.state != RunState.idle:
            raise InvalidStateTransition(f"Run '{run.id}' was already started")
        handle = RunHandle(run=run, project=project, hooks=hooks or RunHooks())
        await self._checkpoint(handle)
        self._launch(handle)
        logger.info(
            "Started %s run %s for project %s (depth=%d parent=%s)",
            run.agent.value,
            run.id,
            run.project_id,
            run.depth,
            run.parent_run_id,
        )
        return handle

    async def resume(self, run_id: str, *, project: Project, hooks: Optional[RunHooks] = None) -> RunHandle:
        """
        Re-drive a checkpointed, non-terminal run from ``planning``.

        Raises:
            RunNotFound: No checkpoint exists for ``run_id``.
            InvalidStateTransition: The run already reached a terminal state.
        """
        existing = self._runs.get(run_id)
        if existing is not None and not existing.done:
            return existing

        payload = await project.store.load_checkpoint(run_id)
        if payload is None:
            raise RunNotFound(run_id)
        run = AgentRun.model_validate(payload)
        if run.state.is_terminal:
            raise InvalidStateTransition(f"Run '{run_id}' is {run.state.value} and cannot be resumed")

        run.state = RunState.planning
        run.updated_at = utc_now()
        handle = RunHandle(
            run=run,
            project=project,
            hooks=hooks or RunHooks(),
            written_keys=set(run.written_keys()),
        )
        await self._checkpoint(handle)
        self._launch(handle)
        logger.info("Resumed run %s after %d completed step(s)", run.id, len(run.steps))
        return handle

    async def wait(self, run_id: str) -> AgentRun:
        handle = self._runs.get(run_id)
        if handle is None:
            raise RunNotFound(run_id)
        return await handle.wait()

    def cancel(self, run_id: str) -> bool:
        """Request cancellation of a run and, transitively, of its active child. Returns False if not running."""
        handle = self._runs.get(run_id)
        if handle is None or handle.done:
            return False
        logger.info("Cancellation requested for run %s", run_id)
        self._request_stop(handle, None)
        return True

    def abort(self, run_id: str, error: AgentDeskError) -> bool:
        """Stop a run and record ``error`` as the reason it failed."""
        handle = self._runs.get(run_id)
        if handle is None or handle.done:
            return False
        logger.warning("Aborting run %s: %s", run_id, error.message)
        self._request_stop(handle, error)
        return True

    def _launch(self, handle: RunHandle) -> None:
        self._runs[handle.run_id] = handle
        handle.task = asyncio.create_task(self._drive(handle), name=f"agent-run:{handle.run_id}")

    def _request_stop(self, handle: RunHandle, error: Optional[AgentDeskError]) -> None:
        handle.cancel_requested = True
        if error is not None and handle.abort_error is None:
            handle.abort_error = error
        if handle.child_id is not None:
            child = self._runs.get(handle.child_id)
            if child is not None and not child.done:
                self._request_stop(child, None)
        if self._deps.executor is not None:
            self._deps.executor.cancel_run(handle.run_id)
        if handle.started and handle.task is not None and not handle.task.done():
            handle.task.cancel()

    async def _drive(self, handle: RunHandle) -> AgentRun:
        run = handle.run
        handle.started = True
        try:
            if handle.cancel_requested:
                raise asyncio.CancelledError()
            await self._graph.ainvoke(
                {"run_id": run.id},
                config={"recursion_limit": self._config.graph_recursion_limit},
            )
        except asyncio.CancelledError:
            await self._stop_child(handle)
            if handle.abort_error is not None:
                run.fail(handle.abort_error)
            elif not run.state.is_terminal:
                run.error = RunError(
                    kind=ErrorKind.cancelled,
                    message="cancelled by request",
                    step_index=len(run.steps),
                )
                run.transition(RunState.cancelled)
            logger.info("Run %s ended %s", run.id, run.state.value)
            await self._final_checkpoint(handle)
        except AgentDeskError as exc:
            await self._stop_child(handle)
            logger.warning("Run %s failed: %s (%s)", run.id, exc.message, exc.kind.value)
            run.fail(exc)
            await self._final_checkpoint(handle)
        except Exception as exc:
            await self._stop_child(handle)
            logger.exception("Run %s crashed", run.id)
            run.fail(InternalError(f"{type(exc).__name__}: {exc}"))
            await self._final_checkpoint(handle)
        finally:
            self._deps.dispatcher.forget_run(run.id)
            self._notify(handle)
        return run

    async def _stop_child(self, handle: RunHandle) -> None:
        if handle.child_id is None:
            return
        child = self._runs.get(handle.child_id)
        if child is None or child.task is None:
            return
        if not child.done:
            self._request_stop(child, None)
        await asyncio.gather(child.task, return_exceptions=True)

    async def _final_checkpoint(self, handle: RunHandle) -> None:
        try:
            await self._checkpoint(handle)
        except AgentDeskError as exc:
            logger.error("Could not checkpoint terminal state of run %s: %s", handle.run_id, exc.message)

    async def _checkpoint(self, handle: RunHandle) -> None:
        await handle.project.store.save_checkpoint(handle.run_id, handle.run.model_dump(mode="json"))

    def _notify(self, handle: RunHandle) -> None:
        if handle.hooks.on_update is not None:
            handle.hooks.on_update(handle.run)

    # Graph nodes

    async def _node_plan(self, state: _GraphState) -> _GraphState:
        """Planning: ask the configuration's planner for the next decision."""
        handle = self._handle(state["run_id"])
        run = handle.run
        if run.state != RunState.planning:
            run.transition(RunState.planning)
        if handle.hooks.step_guard is not None:
            handle.hooks.step_guard(run)
        run.turns += 1

        agent_cfg = self._deps.agents.get(run.agent)
        snapshot = await self._memory_view(handle)
        ctx = PlanningContext(
            run=run.model_copy(deep=True),
            task=dict(run.task),
            memory=snapshot,
            steps=[s.model_copy(deep=True) for s in run.steps],
            tools=self._visible_tools(agent_cfg),
        )
        try:
            decision = await agent_cfg.planner.plan(ctx)
        except AgentDeskError:
            raise
        except Exception as exc:
            raise PlanningFailure(f"planner raised {type(exc).__name__}: {exc}") from exc

        handle.decision = decision
        handle.pending = AgentStep(index=len(run.steps), decision=decision.kind, snapshot_seq=snapshot.seq)
        handle.calls = []
        handle.results = []
        logger.debug("Run %s turn %d decided %s", run.id, run.turns, decision.kind)
        if isinstance(decision, ToolCallsDecision):
            state["route"] = "act"
        elif isinstance(decision, DelegateDecision):
            state["route"] = "delegate"
        else:
            state["route"] = "finish"
        self._notify(handle)
        return state

    async def _node_act(self, state: _GraphState) -> _GraphState:
        """Acting: dispatch the decision's tool calls."""
        handle = self._handle(state["run_id"])
        run = handle.run
        run.transition(RunState.acting)
        decision = handle.decision
        assert isinstance(decision, ToolCallsDecision)

        calls = [c.model_copy(update={"run_id": run.id}) for c in decision.calls]
        handle.calls = calls
        handle.results = await self._execute_calls(handle, calls)
        return state

    async def _node_delegate(self, state: _GraphState) -> _GraphState:
        """Delegating: run a child of the other configuration and wait for it."""
        handle = self._handle(state["run_id"])
        run = handle.run
        run.transition(RunState.delegating)
        decision = handle.decision
        assert isinstance(decision, DelegateDecision)
        pending = handle.pending
        assert pending is not None

        rejection = self._check_delegation(run, decision)
        if rejection is not None:
            logger.info("Run %s delegation rejected: %s", run.id, rejection["error"])
            pending.observations.append(rejection)
            return state

        child_run = AgentRun(
            project_id=run.project_id,
            agent=decision.agent,
            task=dict(decision.task),
            parent_run_id=run.id,
            depth=run.depth + 1,
        )
        child = await self.start(child_run, project=handle.project, hooks=handle.hooks)
        handle.child_id = child.run_id
        pending.delegation = DelegationRef(child_run_id=child.run_id, agent=decision.agent, task=dict(decision.task))
        self._notify(handle)

        finished = await child.wait()
        handle.child_id = None
        pending.observations.append(_delegation_observation(finished))
        return state

    async def _node_observe(self, state: _GraphState) -> _GraphState:
        """Observing: fold results into memory, append the step and checkpoint."""
        handle = self._handle(state["run_id"])
        run = handle.run
        run.transition(RunState.observing)
        pending = handle.pending
        assert pending is not None

        pending.calls = list(handle.calls)
        for call, result in zip(handle.calls, handle.results):
            obs = result.observation()
            if result.ok and call.store_as:
                try:
                    revision = await self._store_output(handle, call.store_as, result.output)
                except ConflictError as exc:
                    obs["status"] = exc.kind.value
                    obs["error"] = exc.message
                    obs["details"] = exc.details
                else:
                    pending.memory_writes.append(CommittedWrite(key=call.store_as, revision=revision))
                    obs["stored_as"] = {"key": call.store_as, "revision": revision}
            pending.observations.append(obs)

        decision = handle.decision
        if isinstance(decision, ToolCallsDecision):
            for write in decision.memory_writes:
                pending.observations.append(await self._apply_memory_write(handle, write))

        pending.finished_at = utc_now()
        run.steps.append(pending)
        handle.pending = None
        await self._checkpoint(handle)
        self._notify(handle)
        return state

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        """Finish node: record the result and the terminal state."""
        handle = self._handle(state["run_id"])
        run = handle.run
        decision = handle.decision
        assert isinstance(decision, FinishDecision)
        pending = handle.pending
        assert pending is not None

        pending.finished_at = utc_now()
        run.steps.append(pending)
        handle.pending = None
        run.result = decision.result
        if decision.succeeded:
            run.transition(RunState.succeeded)
        else:
            run.fail(AgentGaveUp(decision.reason or "planner finished without success"))
        logger.info("Run %s ended %s after %d step(s)", run.id, run.state.value, len(run.steps))
        await self._checkpoint(handle)
        return state

    def _route_after_plan(self, state: _GraphState) -> str:
        return str(state.get("route") or "finish")

    # Helpers

    def _handle(self, run_id: str) -> RunHandle:
        handle = self._runs.get(run_id)
        if handle is None:
            raise RunNotFound(run_id)
        return handle

    async def _memory_view(self, handle: RunHandle) -> MemorySnapshot:
        snapshot = await handle.project.store.snapshot()
        if handle.run.parent_run_id is None:
            return snapshot
        keys = [k for k in snapshot if k in handle.written_keys]
        return MemorySnapshot(
            {k: snapshot[k] for k in keys},
            {k: snapshot.revisions[k] for k in keys},
            seq=snapshot.seq,
        )

    def _visible_tools(self, agent_cfg: AgentConfiguration) -> List[ToolDescriptor]:
        tools = self._deps.dispatcher.registry.list()
        if agent_cfg.allowed_capabilities is None:
            return tools
        allowed = set(agent_cfg.allowed_capabilities)
        return [t for t in tools if set(t.capabilities) <= allowed]

    def _check_delegation(self, run: AgentRun, decision: DelegateDecision) -> Optional[Dict]:
        base = {"delegation": decision.agent.value}
        if decision.agent == run.agent:
            return dict(
                base,
                status=ErrorKind.invalid_delegation.value,
                error=f"a {run.agent.value} run can only delegate to the other agent configuration",
            )
        if not self._deps.agents.has(decision.agent):
            return dict(
                base,
                status=ErrorKind.invalid_delegation.value,
                error=f"no {decision.agent.value} agent is configured",
            )
        depth = run.depth + 1
        if depth > self._config.max_delegation_depth:
            exc = DelegationDepthExceeded(depth, self._config.max_delegation_depth)
            return dict(base, status=exc.kind.value, error=exc.message, details=exc.details)
        return None

    async def _execute_calls(self, handle: RunHandle, calls: List[ToolCall]) -> List[ToolResult]:
        run = handle.run
        agent_cfg = self._deps.agents.get(run.agent)
        limit = agent_cfg.max_in_flight_calls or self._config.max_in_flight_calls

        index_of: Dict[str, int] = {}
        for i, call in enumerate(calls):
            index_of.setdefault(call.id, i)

        invalid: Dict[int, str] = {}
        for i, call in enumerate(calls):
            unknown = [d for d in call.depends_on if index_of.get(d, i) == i]
            if unknown:
                invalid[i] = f"unknown dependencies: {unknown}"

        # Calls whose dependency chains bottom out; the rest are cyclic or
        # depend on an invalid call.
        resolved: List[int] = []
        resolved_set = set()
        progress = True
        while progress:
            progress = False
            for i in range(len(calls)):
                if i in invalid or i in resolved_set:
                    continue
                if all(index_of[d] in resolved_set for d in calls[i].depends_on):
                    resolved.append(i)
                    resolved_set.add(i)
                    progress = True
        for i in range(len(calls)):
            if i not in invalid and i not in resolved_set:
                invalid[i] = "dependency cycle or dependency on an invalid call"

        results: Dict[int, ToolResult] = {}
        finished = {i: asyncio.Event() for i in resolved}
        semaphore = asyncio.Semaphore(limit)

        async def _run_call(i: int) -> None:
            call = calls[i]
            try:
                for dep in call.depends_on:
                    await finished[index_of[dep]].wait()
                failed = [d for d in call.depends_on if not (results.get(index_of[d]) and results[index_of[d]].ok)]
                if failed:
                    results[i] = ToolResult.failure(
                        call, ErrorKind.invalid_dependency, f"dependencies did not succeed: {failed}"
                    )
                    return
                async with semaphore:
                    results[i] = await self._deps.dispatcher.dispatch(
                        call,
                        project=handle.project,
                        allowed_capabilities=agent_cfg.allowed_capabilities,
                        terminated=run.state.is_terminal,
                    )
            finally:
                finished[i].set()

        tasks = [asyncio.create_task(_run_call(i)) for i in resolved]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for i, reason in invalid.items():
            results[i] = ToolResult.failure(calls[i], ErrorKind.invalid_dependency, reason)
        return [results[i] for i in range(len(calls))]

    async def _store_output(self, handle: RunHandle, key: str, value) -> int:
        """Last-writer-wins write of a tool output; re-reads and retries on conflict."""
        store = handle.project.store
        attempts = self._config.memory_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            current = await store.read(key)
            expected = current.revision if current is not None else 0
            try:
                revision = await store.write(key, value, expected_revision=expected, run_id=handle.run_id)
            except ConflictError:
                if attempt == attempts:
                    raise
                logger.debug("Conflict storing %s for run %s; retrying", key, handle.run_id)
                continue
            handle.written_keys.add(key)
            return revision
        raise AssertionError("unreachable")

    async def _apply_memory_write(self, handle: RunHandle, write) -> Dict:
        pending = handle.pending
        assert pending is not None
        try:
            revision = await handle.project.store.write(
                write.key,
                write.value,
                expected_revision=write.expected_revision,
                run_id=handle.run_id,
            )
        except ConflictError as exc:
            return {"memory_write": write.key, "status": exc.kind.value, "error": exc.message, "details": exc.details}
        handle.written_keys.add(write.key)
        pending.memory_writes.append(CommittedWrite(key=write.key, revision=revision))
        return {"memory_write": write.key, "status": "Succeeded", "revision": revision}


def _delegation_observation(child: AgentRun) -> Dict:
    if child.state == RunState.succeeded:
        status = "Succeeded"
    elif child.error is not None:
        status = child.error.kind.value
    else:
        status = ErrorKind.cancelled.value
    obs: Dict = {
        "delegation": child.agent.value,
        "child_run_id": child.id,
        "status": status,
        "state": child.state.value,
        "result": child.result,
    }
    if child.error is not None:
        obs["error"] = child.error.message
    return obs
