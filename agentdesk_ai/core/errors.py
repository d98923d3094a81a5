"""Error taxonomy for the orchestration core.

Purpose:
- Give every failure a typed ``ErrorKind`` so that observations, run records
  and the Supervisor's ``status`` can report the most specific cause.
- Separate *fatal* errors (raised and handled by the runtime) from *per-call*
  failures, which the Dispatcher converts into ``ToolError`` values.

Usage:
- Catch ``AgentDeskError`` for any domain failure and inspect ``kind``.
- Catch ``ConflictError`` around ``MemoryStore.write`` and re-read before
  retrying.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    persistence_failure = "PersistenceFailure"
    conflict = "ConflictError"
    duplicate_tool = "DuplicateTool"
    registry_locked = "RegistryLocked"
    schema_validation = "SchemaValidationError"
    timed_out = "TimedOut"
    resource_exceeded = "ResourceExceeded"
    sandbox_violation = "SandboxViolation"
    cancelled = "Cancelled"
    transport = "TransportError"
    delegation_depth_exceeded = "DelegationDepthExceeded"
    run_already_active = "RunAlreadyActive"
    run_not_found = "RunNotFound"
    tool_not_found = "ToolNotFound"
    capability_denied = "CapabilityDenied"
    tool_execution = "ToolExecutionError"
    remote_tool = "RemoteToolError"
    invalid_dependency = "InvalidDependency"
    invalid_delegation = "InvalidDelegation"
    duplicate_call_id = "DuplicateCallId"
    run_terminated = "RunTerminated"
    invalid_state_transition = "InvalidStateTransition"
    turn_limit_exceeded = "TurnLimitExceeded"
    run_timeout = "RunTimeout"
    agent_gave_up = "AgentGaveUp"
    planning_failure = "PlanningFailure"
    internal = "InternalError"


class AgentDeskError(Exception):
    """Base error for the orchestration core.

    Args:
        message: Human-readable error description.
        details: Optional structured context for diagnosis.
    """

    kind: ErrorKind = ErrorKind.tool_execution

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class PersistenceFailure(AgentDeskError):
    """A write could not be flushed to durable storage; the prior value is intact."""

    kind = ErrorKind.persistence_failure


class ConflictError(AgentDeskError):
    """Optimistic concurrency check failed for a memory key."""

    kind = ErrorKind.conflict

    def __init__(self, key: str, *, expected: Optional[int], actual: Optional[int]) -> None:
        super().__init__(
            f"Revision conflict on '{key}': expected {expected}, found {actual}",
            details={"key": key, "expected": expected, "actual": actual},
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class DuplicateTool(AgentDeskError):
    kind = ErrorKind.duplicate_tool

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool already registered: '{name}'", details={"name": name})
        self.name = name


class RegistryLocked(AgentDeskError):
    kind = ErrorKind.registry_locked

    def __init__(self, operation: str) -> None:
        super().__init__(f"Tool registry is locked by an active run; cannot {operation}")


class SchemaValidationError(AgentDeskError):
    kind = ErrorKind.schema_validation


class TimedOut(AgentDeskError):
    kind = ErrorKind.timed_out


class ResourceExceeded(AgentDeskError):
    kind = ErrorKind.resource_exceeded


class SandboxViolation(AgentDeskError):
    kind = ErrorKind.sandbox_violation


class Cancelled(AgentDeskError):
    kind = ErrorKind.cancelled


class TransportError(AgentDeskError):
    """Connection to a remote tool server was lost or could not be established."""

    kind = ErrorKind.transport


class DelegationDepthExceeded(AgentDeskError):
    kind = ErrorKind.delegation_depth_exceeded

    def __init__(self, depth: int, ceiling: int) -> None:
        super().__init__(
            f"Delegation depth {depth} exceeds ceiling {ceiling}",
            details={"depth": depth, "ceiling": ceiling},
        )


class RunAlreadyActive(AgentDeskError):
    kind = ErrorKind.run_already_active

    def __init__(self, project_id: str, run_id: str) -> None:
        super().__init__(
            f"Project '{project_id}' already has an active run: '{run_id}'",
            details={"project_id": project_id, "run_id": run_id},
        )
        self.project_id = project_id
        self.run_id = run_id


class RunNotFound(AgentDeskError):
    kind = ErrorKind.run_not_found

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Agent run not found: '{run_id}'", details={"run_id": run_id})
        self.run_id = run_id


class InvalidStateTransition(AgentDeskError):
    """Driver-level invariant violation, e.g. mutating a terminal run."""

    kind = ErrorKind.invalid_state_transition


class TurnLimitExceeded(AgentDeskError):
    kind = ErrorKind.turn_limit_exceeded


class RunTimeout(AgentDeskError):
    kind = ErrorKind.run_timeout


class PlanningFailure(AgentDeskError):
    kind = ErrorKind.planning_failure


class ToolExecutionError(AgentDeskError):
    """A local or sandboxed tool handler failed."""

    kind = ErrorKind.tool_execution


class RemoteToolError(AgentDeskError):
    """A remote MCP tool reported an error result."""

    kind = ErrorKind.remote_tool


class AgentGaveUp(AgentDeskError):
    """The planner finished the run without succeeding."""

    kind = ErrorKind.agent_gave_up


class InternalError(AgentDeskError):
    """Unexpected exception inside the runtime driver."""

    kind = ErrorKind.internal
