"""
Configuration Settings.

This module defines the orchestration core configuration using Pydantic's BaseSettings.
All values can be overridden from environment variables (prefix ``AGENTDESK_``) or a
.env file. Nested sections use a double underscore as delimiter, for example
``AGENTDESK_SANDBOX__GRACE_SECONDS=1.5`` maps to ``settings.sandbox.grace_seconds``.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# =====================================================================
# Section Models
# =====================================================================


class StorageConfig(BaseModel):
    """Where project state lives when the host does not supply a root path."""

    root: Path = Field(
        default=Path(".agentdesk") / "projects",
        description="Parent directory for per-project storage roots",
    )
    database_filename: str = Field(default="memory.db", description="SQLite file name inside a project root")
    scratch_dirname: str = Field(default="scratch", description="Per-run scratch parent directory name")


class SandboxConfig(BaseModel):
    """Default resource ceilings for sandbox jobs."""

    cpu_seconds: float = Field(default=30.0, gt=0, description="CPU time limit per job")
    wall_seconds: float = Field(default=60.0, gt=0, description="Wall-clock limit per job")
    memory_bytes: int = Field(default=512 * 1024 * 1024, gt=0, description="Address-space ceiling per job")
    output_bytes: int = Field(default=256 * 1024, gt=0, description="Captured bytes per stream before truncation")
    grace_seconds: float = Field(default=2.0, gt=0, description="Time between SIGTERM and SIGKILL on cancel")
    python_executable: Optional[str] = Field(
        default=None, description="Interpreter for python jobs (defaults to the current interpreter)"
    )
    artifact_inline_bytes: int = Field(
        default=64 * 1024, ge=0, description="Artifacts up to this size are stored inline in memory records"
    )


class DispatcherConfig(BaseModel):
    """Tool dispatch behaviour."""

    transport_retry_backoff_seconds: float = Field(
        default=0.5, ge=0, description="Delay before the single retry of a TransportError"
    )
    mcp_call_timeout_seconds: float = Field(default=30.0, gt=0, description="Default remote tool timeout")


class RuntimeConfig(BaseModel):
    """State machine parameters shared by every agent configuration."""

    max_in_flight_calls: int = Field(default=4, ge=1, description="Concurrent tool calls per Acting phase")
    max_delegation_depth: int = Field(default=2, ge=0, description="Deepest allowed child run")
    memory_conflict_retries: int = Field(default=3, ge=0, description="Re-read/retry attempts on ConflictError")
    graph_recursion_limit: int = Field(default=10_000, ge=25, description="LangGraph super-step ceiling")


class McpConfig(BaseModel):
    """Remote MCP tool servers connected at start-up."""

    endpoints_file: Optional[Path] = Field(
        default=None, description="JSON file holding a list of endpoint objects (name, transport, url/command, ...)"
    )
    connect_timeout_seconds: float = Field(default=30.0, gt=0, description="Session open/close timeout")


class PlannerConfig(BaseModel):
    """Language model behind the default planners."""

    model: Optional[str] = Field(
        default=None,
        description="pydantic-ai model name, e.g. 'openai:gpt-4o'; unset disables model planning",
    )
    coding_model: Optional[str] = Field(default=None, description="Model for the coding agent (defaults to ``model``)")
    instructions: Optional[str] = Field(default=None, description="Extra system prompt appended to every planner")


class SupervisorConfig(BaseModel):
    """Per-run resource policy enforced by the Supervisor."""

    max_turns: int = Field(default=50, ge=1, description="Planning phases allowed per run")
    run_timeout_seconds: float = Field(default=1800.0, gt=0, description="Wall-clock budget per top-level run")


class ServerConfig(BaseModel):
    """Host command surface."""

    host: str = Field(default="127.0.0.1", description="Bind address for the command channel")
    port: int = Field(default=8765, description="Port for the command channel")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Console log level")
    format: str = Field(default="detailed", description="simple, detailed or json")
    file_dir: Optional[Path] = Field(default=None, description="Enable file logging into this directory")


# =====================================================================
# Main Settings Class
# =====================================================================


class AgentDeskSettings(BaseSettings):
    """
    Orchestration core settings model.

    All properties are automatically bound from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTDESK_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    mcp: McpConfig = Field(default_factory=McpConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def get_settings() -> AgentDeskSettings:
    """Build settings from the current environment."""
    return AgentDeskSettings()
