from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from ...core.errors import AgentDeskError, ErrorKind, InvalidStateTransition
from ...core.schemas import BaseSchema, utc_now
from ...tools.base import ToolCall


class AgentKind(str, Enum):
    reasoning = "reasoning"
    coding = "coding"

    @property
    def other(self) -> "AgentKind":
        return AgentKind.coding if self == AgentKind.reasoning else AgentKind.reasoning


class RunState(str, Enum):
    idle = "idle"
    planning = "planning"
    acting = "acting"
    observing = "observing"
    delegating = "delegating"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({RunState.succeeded, RunState.failed, RunState.cancelled})

_TRANSITIONS: Dict[RunState, frozenset] = {
    RunState.idle: frozenset({RunState.planning, RunState.failed, RunState.cancelled}),
    RunState.planning: frozenset(
        {RunState.acting, RunState.delegating, RunState.succeeded, RunState.failed, RunState.cancelled}
    ),
    RunState.acting: frozenset({RunState.observing, RunState.failed, RunState.cancelled}),
    RunState.delegating: frozenset({RunState.observing, RunState.failed, RunState.cancelled}),
    RunState.observing: frozenset({RunState.planning, RunState.failed, RunState.cancelled}),
    RunState.succeeded: frozenset(),
    RunState.failed: frozenset(),
    RunState.cancelled: frozenset(),
}


class RunError(BaseSchema):
    kind: ErrorKind
    message: str
    step_index: Optional[int] = None
    details: Optional[Any] = None


class DelegationRef(BaseSchema):
    child_run_id: str
    agent: AgentKind
    task: Dict[str, Any] = Field(default_factory=dict)


class CommittedWrite(BaseSchema):
    key: str
    revision: int


class AgentStep(BaseSchema):
    """One Planning -> (Acting | Delegating) -> Observing cycle.

    ``snapshot_seq`` references the memory history position the planning phase
    saw; replaying the history log up to it rebuilds that input snapshot.
    """

    index: int
    decision: str
    snapshot_seq: int = 0
    calls: List[ToolCall] = Field(default_factory=list)
    observations: List[Dict[str, Any]] = Field(default_factory=list)
    delegation: Optional[DelegationRef] = None
    memory_writes: List[CommittedWrite] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None


class AgentRun(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    agent: AgentKind
    task: Dict[str, Any] = Field(default_factory=dict)

    state: RunState = RunState.idle
    steps: List[AgentStep] = Field(default_factory=list)
    turns: int = 0

    parent_run_id: Optional[str] = None
    depth: int = 0

    error: Optional[RunError] = None
    result: Optional[Any] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def transition(self, new_state: RunState) -> None:
        """Move to ``new_state``; raises ``InvalidStateTransition`` for illegal moves."""
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"Run '{self.id}' cannot move from {self.state.value} to {new_state.value}",
                details={"run_id": self.id, "from": self.state.value, "to": new_state.value},
            )
        self.state = new_state
        self.updated_at = utc_now()

    def fail(self, exc: AgentDeskError) -> None:
        """Record the first unrecoverable error and move to ``failed``."""
        if self.state.is_terminal:
            return
        if self.error is None:
            self.error = RunError(kind=exc.kind, message=exc.message, step_index=len(self.steps), details=exc.details)
        self.transition(RunState.failed)

    @property
    def last_step(self) -> Optional[AgentStep]:
        return self.steps[-1] if self.steps else None

    @property
    def last_observation(self) -> Optional[Dict[str, Any]]:
        for step in reversed(self.steps):
            if step.observations:
                return step.observations[-1]
        return None

    def written_keys(self) -> List[str]:
        return sorted({w.key for s in self.steps for w in s.memory_writes})
