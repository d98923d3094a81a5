"""Isolated execution of agent-authored scripts.

 - ``SandboxExecutor``: runs one ``SandboxJob`` per OS process under CPU,
   memory, wall-clock and output ceilings, confined to its run's scratch
   directory.
 - ``SandboxJob``/``SandboxResult``: the job payload and its reported outcome.
 """

from .executor import SandboxExecutor
from .models import (
    ArtifactRecord,
    ResourceLimits,
    SandboxJob,
    SandboxResult,
    SandboxStatus,
    ScriptLanguage,
)

__all__ = [
    "ArtifactRecord",
    "ResourceLimits",
    "SandboxExecutor",
    "SandboxJob",
    "SandboxResult",
    "SandboxStatus",
    "ScriptLanguage",
]
