"""Agent Runtime: run/step schemas, the planning capability, agent
configurations and the LangGraph state machine that drives runs."""

from .agents import AgentConfiguration, AgentRegistry, default_agents
from .runtime import AgentEngine, EngineDeps, RunHandle, RunHooks
from .schemas import AgentKind, AgentRun, AgentStep, RunError, RunState

__all__ = [
    "AgentConfiguration",
    "AgentEngine",
    "AgentKind",
    "AgentRegistry",
    "AgentRun",
    "AgentStep",
    "EngineDeps",
    "RunError",
    "RunHandle",
    "RunHooks",
    "RunState",
    "default_agents",
]
