from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import Field, TypeAdapter, model_validator

from ...core.schemas import BaseSchema
from ...tools.base import ToolCall, ToolDescriptor
from ..schemas.domain import AgentKind, AgentRun, AgentStep


class MemoryWrite(BaseSchema):
    key: str = Field(..., min_length=1)
    value: Any = None
    expected_revision: Optional[int] = Field(
        default=None,
        ge=0,
        description="Write only if the key is at this revision (0: key must not exist).",
    )


class ToolCallsDecision(BaseSchema):
    kind: Literal["tool_calls"] = "tool_calls"
    calls: List[ToolCall] = Field(default_factory=list)
    memory_writes: List[MemoryWrite] = Field(default_factory=list)

    @model_validator(mode="after")
    def _not_empty(self) -> "ToolCallsDecision":
        if not self.calls and not self.memory_writes:
            raise ValueError("a tool_calls decision needs at least one call or memory write")
        return self


class DelegateDecision(BaseSchema):
    kind: Literal["delegate"] = "delegate"
    agent: AgentKind
    task: Dict[str, Any] = Field(default_factory=dict)


class FinishDecision(BaseSchema):
    kind: Literal["finish"] = "finish"
    succeeded: bool = True
    result: Any = None
    reason: Optional[str] = None


Decision = Annotated[Union[ToolCallsDecision, DelegateDecision, FinishDecision], Field(discriminator="kind")]

_DECISION_ADAPTER: TypeAdapter = TypeAdapter(Decision)


def normalize_decision(raw: Union[Decision, Dict[str, Any]]) -> Decision:
    """Accept a decision model or its dict form and return the validated model."""
    if isinstance(raw, (ToolCallsDecision, DelegateDecision, FinishDecision)):
        return raw
    return _DECISION_ADAPTER.validate_python(raw)


@dataclass(frozen=True)
class PlanningContext:
    """Everything a planner sees for one Planning phase.

    ``memory`` is the run's memory view: the full project snapshot for a
    top-level run, and only the keys the run wrote itself for a delegated run.
    """

    run: AgentRun
    task: Dict[str, Any]
    memory: Mapping[str, Any]
    steps: List[AgentStep]
    tools: List[ToolDescriptor] = field(default_factory=list)

    @property
    def turn(self) -> int:
        return len(self.steps)

    @property
    def last_step(self) -> Optional[AgentStep]:
        return self.steps[-1] if self.steps else None

    @property
    def last_observations(self) -> List[Dict[str, Any]]:
        step = self.last_step
        return list(step.observations) if step is not None else []
