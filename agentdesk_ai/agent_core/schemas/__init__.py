from .domain import (
    TERMINAL_STATES,
    AgentKind,
    AgentRun,
    AgentStep,
    CommittedWrite,
    DelegationRef,
    RunError,
    RunState,
)

__all__ = [
    "TERMINAL_STATES",
    "AgentKind",
    "AgentRun",
    "AgentStep",
    "CommittedWrite",
    "DelegationRef",
    "RunError",
    "RunState",
]
