from __future__ import annotations

"""Tool descriptors, tool calls and their results.

A tool is described by a ``ToolDescriptor`` whose ``handler`` is a tagged
variant:

- ``LocalHandler``: an async Python function run in-process.
- ``SandboxHandler``: a script executed by the ``SandboxExecutor``; either a
  fixed template (arguments are passed as JSON on stdin) or, when no template
  is set, agent-authored source taken from the call arguments.
- ``McpHandler``: a tool on a remote MCP server reached through the gateway.

The ``ToolDispatcher`` resolves the handler with a single switch on
``handler.kind``. Handlers do not perform capability or schema checks; the
dispatcher enforces both before invocation.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Literal,
    Optional,
    Union,
)
from uuid import uuid4

from pydantic import Field

from ..core.errors import ErrorKind
from ..core.schemas import BaseSchema
from ..sandbox.models import ResourceLimits, ScriptLanguage

if TYPE_CHECKING:
    from ..memory.project import Project


class Capability(str, Enum):
    """Well-known capability tags. Descriptors may carry other tags as plain strings."""

    network = "network"
    filesystem = "filesystem"
    process_spawn = "process-spawn"
    memory = "memory"
    mcp = "mcp"


def capability_set(tags: Iterable[Union[str, Capability]]) -> FrozenSet[str]:
    return frozenset(t.value if isinstance(t, Capability) else str(t) for t in tags)


@dataclass(frozen=True)
class ToolContext:
    """Execution context passed to local tool functions.

    Attributes
    ----------
    run_id:
        The issuing Agent Run.
    call_id:
        The Tool Call being executed.
    project:
        The run's project, when the dispatcher was given one.
    """

    run_id: str
    call_id: str
    project: Optional["Project"] = None

    @property
    def scratch_dir(self) -> Optional[Path]:
        return None if self.project is None else self.project.scratch_dir(self.run_id)


LocalFunction = Callable[[ToolContext, Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class LocalHandler:
    fn: LocalFunction
    kind: Literal["local"] = "local"


@dataclass(frozen=True)
class SandboxHandler:
    language: ScriptLanguage = ScriptLanguage.python
    template: Optional[str] = None
    limits: ResourceLimits = field(default_factory=ResourceLimits)
    artifacts: tuple = ()
    kind: Literal["sandbox"] = "sandbox"


@dataclass(frozen=True)
class McpHandler:
    endpoint: str
    remote_name: str
    kind: Literal["mcp"] = "mcp"


ToolHandler = Union[LocalHandler, SandboxHandler, McpHandler]


@dataclass(frozen=True)
class ToolDescriptor:
    """Registered tool: name, JSON schemas, capability tags and handler reference."""

    name: str
    handler: ToolHandler
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object"})
    output_schema: Optional[Dict[str, Any]] = None
    capabilities: FrozenSet[str] = frozenset()
    description: str = ""

    def summary(self) -> Dict[str, Any]:
        """JSON-compatible view used by planners and the host surface."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
            "capabilities": sorted(self.capabilities),
            "handler": self.handler.kind,
        }


class ToolCall(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    run_id: str = ""
    depends_on: List[str] = Field(default_factory=list)
    store_as: Optional[str] = Field(default=None, description="Memory key receiving the successful output.")


class ToolError(BaseSchema):
    kind: ErrorKind
    message: str
    details: Optional[Any] = None


class ToolResult(BaseSchema):
    """Outcome of one Tool Call: a success payload or a typed failure."""

    call_id: str
    tool: str
    ok: bool
    output: Optional[Any] = None
    error: Optional[ToolError] = None

    @classmethod
    def success(cls, call: ToolCall, output: Any) -> "ToolResult":
        return cls(call_id=call.id, tool=call.tool, ok=True, output=output)

    @classmethod
    def failure(
        cls,
        call: ToolCall,
        kind: ErrorKind,
        message: str,
        *,
        details: Optional[Any] = None,
        output: Optional[Any] = None,
    ) -> "ToolResult":
        return cls(
            call_id=call.id,
            tool=call.tool,
            ok=False,
            output=output,
            error=ToolError(kind=kind, message=message, details=details),
        )

    @property
    def status(self) -> str:
        return "Succeeded" if self.ok else self.error.kind.value  # type: ignore[union-attr]

    def observation(self) -> Dict[str, Any]:
        """Shape folded into the agent's step history, e.g. ``{"status": "TimedOut", ...}``."""
        obs: Dict[str, Any] = {"call_id": self.call_id, "tool": self.tool, "status": self.status}
        if self.output is not None:
            obs["output"] = self.output
        if self.error is not None:
            obs["error"] = self.error.message
            if self.error.details is not None:
                obs["details"] = self.error.details
        return obs
