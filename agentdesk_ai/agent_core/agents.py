from __future__ import annotations

"""Agent configurations.

The reasoning agent and the coding agent are two configurations of the same
runtime state machine. A configuration supplies the planner, an optional
capability allow-list enforced by the dispatcher, and an optional fan-out
ceiling for concurrent tool calls.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

from ..tools.base import Capability, capability_set
from .planning.planner import Planner
from .schemas.domain import AgentKind

CODING_CAPABILITIES: FrozenSet[str] = capability_set(
    [Capability.process_spawn, Capability.filesystem, Capability.memory]
)


@dataclass(frozen=True)
class AgentConfiguration:
    kind: AgentKind
    planner: Planner
    allowed_capabilities: Optional[FrozenSet[str]] = None
    max_in_flight_calls: Optional[int] = None
    description: str = ""


class AgentRegistry:
    """
    Registry of agent configurations keyed by ``AgentKind``.

    Notes:
        - ``register`` replaces an existing configuration of the same kind.
        - ``get`` raises ``KeyError`` for unknown kinds.
    """

    def __init__(self, configs: Iterable[AgentConfiguration] = ()) -> None:
        self._configs: Dict[AgentKind, AgentConfiguration] = {}
        for cfg in configs:
            self.register(cfg)

    def register(self, config: AgentConfiguration) -> None:
        self._configs[AgentKind(config.kind)] = config

    def get(self, kind: AgentKind) -> AgentConfiguration:
        try:
            return self._configs[AgentKind(kind)]
        except KeyError as e:
            raise KeyError(f"unknown agent configuration: {kind}") from e

    def has(self, kind: AgentKind) -> bool:
        return AgentKind(kind) in self._configs

    def kinds(self) -> List[AgentKind]:
        return list(self._configs)


def default_agents(
    *,
    reasoning_planner: Planner,
    coding_planner: Planner,
    coding_capabilities: Optional[FrozenSet[str]] = CODING_CAPABILITIES,
) -> AgentRegistry:
    """Reasoning agent with every capability; coding agent restricted to local execution and memory."""
    return AgentRegistry(
        [
            AgentConfiguration(
                kind=AgentKind.reasoning,
                planner=reasoning_planner,
                description="Plans research tasks, fetches and analyses documents, delegates coding work.",
            ),
            AgentConfiguration(
                kind=AgentKind.coding,
                planner=coding_planner,
                allowed_capabilities=coding_capabilities,
                description="Writes and runs scripts in the sandbox.",
            ),
        ]
    )
