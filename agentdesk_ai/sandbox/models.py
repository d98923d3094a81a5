"""Data models for the sandbox subsystem."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field, model_validator

from ..core.errors import ErrorKind
from ..core.schemas import BaseSchema


class ScriptLanguage(str, Enum):
    # Every job runs behind the python write guard.
    python = "python"


class SandboxStatus(str, Enum):
    succeeded = "Succeeded"
    failed = "Failed"
    timed_out = "TimedOut"
    resource_exceeded = "ResourceExceeded"
    sandbox_violation = "SandboxViolation"
    cancelled = "Cancelled"

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return _STATUS_TO_KIND.get(self)


_STATUS_TO_KIND = {
    SandboxStatus.failed: ErrorKind.tool_execution,
    SandboxStatus.timed_out: ErrorKind.timed_out,
    SandboxStatus.resource_exceeded: ErrorKind.resource_exceeded,
    SandboxStatus.sandbox_violation: ErrorKind.sandbox_violation,
    SandboxStatus.cancelled: ErrorKind.cancelled,
}


class ResourceLimits(BaseSchema):
    """Per-job ceilings. Unset fields fall back to ``SandboxConfig`` defaults."""

    cpu_seconds: Optional[float] = Field(default=None, gt=0, description="CPU time before the job is killed.")
    wall_seconds: Optional[float] = Field(default=None, gt=0, description="Wall-clock time before the job is killed.")
    memory_bytes: Optional[int] = Field(default=None, gt=0, description="Address-space ceiling.")
    output_bytes: Optional[int] = Field(default=None, gt=0, description="Captured bytes per stream.")


class SandboxJob(BaseSchema):
    """One isolated execution of a script."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    run_id: str = Field(..., description="Agent run owning the scratch directory.")
    language: ScriptLanguage = ScriptLanguage.python
    source: Optional[str] = Field(default=None, description="Script text.")
    path: Optional[str] = Field(default=None, description="Script file, relative to the scratch directory.")
    stdin: Optional[str] = Field(default=None, description="Data fed to the job's standard input.")
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    artifacts: List[str] = Field(
        default_factory=list,
        description="Relative paths under the run scratch directory the job may write.",
    )

    @model_validator(mode="after")
    def _source_or_path(self) -> "SandboxJob":
        if (self.source is None) == (self.path is None):
            raise ValueError("exactly one of 'source' or 'path' must be set")
        return self


class ArtifactRecord(BaseSchema):
    path: str
    size: int
    sha256: str
    memory_key: Optional[str] = None
    content: Optional[str] = None


class SandboxResult(BaseSchema):
    job_id: str
    status: SandboxStatus
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    artifacts: List[ArtifactRecord] = Field(default_factory=list)
    duration_seconds: float = 0.0
    detail: Optional[str] = None
    pid: Optional[int] = Field(default=None, exclude=True)

    @property
    def ok(self) -> bool:
        return self.status == SandboxStatus.succeeded

    def to_output(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
