"""
Supervisor assembly.

Wires the registry, sandbox, MCP gateway, dispatcher, agent runtime and
project storage together from ``AgentDeskSettings``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

import httpx

from ..agent_core.agents import default_agents
from ..agent_core.planning import FinishDecision, Planner, PydanticAIPlanner, ScriptedPlanner
from ..agent_core.runtime import AgentEngine, EngineDeps
from ..core.config import AgentDeskSettings, PlannerConfig, get_settings
from ..mcp.gateway import McpGateway
from ..mcp.schemas import McpEndpoint, load_endpoints
from ..memory.project import ProjectManager
from ..sandbox.executor import SandboxExecutor
from ..tools.builtin import builtin_tools
from ..tools.dispatcher import ToolDispatcher
from ..tools.registry import ToolRegistry
from .supervisor import Supervisor

logger = logging.getLogger(__name__)


def planner_from_config(config: PlannerConfig, *, coding: bool = False) -> Planner:
    """
    Build the planner for one agent configuration.

    Without a configured model the planner finishes every run as failed, so a
    host that forgot to configure a model gets a clear error instead of a hang.
    """
    model = (config.coding_model or config.model) if coding else config.model
    if not model:
        return ScriptedPlanner(lambda ctx: FinishDecision(succeeded=False, reason="no planner model configured"))
    return PydanticAIPlanner(model, instructions=config.instructions)


async def build_supervisor(
    settings: Optional[AgentDeskSettings] = None,
    *,
    reasoning_planner: Optional[Planner] = None,
    coding_planner: Optional[Planner] = None,
    mcp_endpoints: Optional[Iterable[McpEndpoint]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Supervisor:
    """
    Assemble a ready-to-use ``Supervisor``.

    Registration (built-in tools, then every MCP endpoint) happens here,
    before any run can lock the registry.

    Args:
        settings: Settings to use; read from the environment when omitted.
        reasoning_planner: Planner of the reasoning agent (defaults from ``settings.planner``).
        coding_planner: Planner of the coding agent (defaults from ``settings.planner``).
        mcp_endpoints: Remote tool servers to connect at startup (defaults to ``settings.mcp.endpoints_file``).
        http_client: Shared client for the ``web_fetch`` tool.
    """
    settings = settings or get_settings()

    registry = ToolRegistry()
    for descriptor in builtin_tools(http_client=http_client):
        registry.register(descriptor)

    executor = SandboxExecutor(settings.sandbox)
    gateway = McpGateway(
        registry,
        connect_timeout=settings.mcp.connect_timeout_seconds,
        call_timeout=settings.dispatcher.mcp_call_timeout_seconds,
    )
    if mcp_endpoints is None:
        mcp_endpoints = load_endpoints(settings.mcp.endpoints_file) if settings.mcp.endpoints_file else []
    for endpoint in mcp_endpoints:
        await gateway.connect(endpoint)

    dispatcher = ToolDispatcher(registry, executor=executor, gateway=gateway, config=settings.dispatcher)
    agents = default_agents(
        reasoning_planner=reasoning_planner or planner_from_config(settings.planner),
        coding_planner=coding_planner or planner_from_config(settings.planner, coding=True),
    )
    engine = AgentEngine(
        deps=EngineDeps(dispatcher=dispatcher, agents=agents, executor=executor),
        config=settings.runtime,
    )
    supervisor = Supervisor(
        engine=engine,
        projects=ProjectManager(settings.storage),
        registry=registry,
        config=settings.supervisor,
        gateway=gateway,
    )
    logger.info("Supervisor ready with %d tool(s)", len(registry.list()))
    return supervisor
