import asyncio
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agentdesk_ai.agent_core import AgentConfiguration, AgentEngine, AgentKind, AgentRegistry, EngineDeps
from agentdesk_ai.agent_core.planning import FinishDecision, PlanningContext, ScriptedPlanner, ToolCallsDecision
from agentdesk_ai.core.config import AgentDeskSettings, DispatcherConfig
from agentdesk_ai.memory.project import ProjectManager
from agentdesk_ai.supervisor import Supervisor
from agentdesk_ai.tools import Capability, LocalHandler, ToolCall, ToolDescriptor, ToolDispatcher, ToolRegistry, capability_set


class Gate:
    """Local tool that blocks until released."""

    def __init__(self) -> None:
        self.event = asyncio.Event()

    async def wait(self, ctx, args):
        await self.event.wait()
        return {"released": True}


def _plan(ctx: PlanningContext):
    if ctx.task.get("intent") == "finish":
        return FinishDecision(result="done")
    if ctx.steps:
        return FinishDecision(result="released")
    return ToolCallsDecision(calls=[ToolCall(tool="wait")])


@pytest.fixture
def gate() -> Gate:
    return Gate()


@pytest_asyncio.fixture(name="supervisor")
async def supervisor_fixture(settings: AgentDeskSettings, gate: Gate) -> AsyncGenerator[Supervisor, None]:
    registry = ToolRegistry()
    registry.register(
        ToolDescriptor(
            name="wait",
            description="Block until released",
            handler=LocalHandler(fn=gate.wait),
            capabilities=capability_set([Capability.memory]),
        )
    )
    dispatcher = ToolDispatcher(registry, config=DispatcherConfig(transport_retry_backoff_seconds=0))
    agents = AgentRegistry(
        [
            AgentConfiguration(kind=AgentKind.reasoning, planner=ScriptedPlanner(_plan)),
            AgentConfiguration(kind=AgentKind.coding, planner=ScriptedPlanner(_plan)),
        ]
    )
    supervisor = Supervisor(
        engine=AgentEngine(deps=EngineDeps(dispatcher=dispatcher, agents=agents), config=settings.runtime),
        projects=ProjectManager(settings.storage),
        registry=registry,
        config=settings.supervisor,
    )
    yield supervisor
    gate.event.set()
    await supervisor.shutdown()


@pytest_asyncio.fixture(name="client")
async def client_fixture(supervisor: Supervisor) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against an app wired to the test Supervisor (no lifespan)."""
    from agentdesk_ai.server.main import create_app

    app = create_app(supervisor)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
        yield client
