"""
Main Application Entry Point.

This module builds the FastAPI application for the host command surface,
configures middleware and exception handlers, and includes the API routers.
The ``Supervisor`` is created by the lifespan handler unless one is injected
through ``create_app``.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentdesk_ai import __version__
from agentdesk_ai.core.config import get_settings
from agentdesk_ai.core.logging_config import get_logger
from agentdesk_ai.supervisor import Supervisor, build_supervisor

from .api.v1 import health, runs, tools
from .core import constant
from .exception_handlers import setup_exception_handlers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Builds the Supervisor on startup when none was injected, and shuts it
    down (cancelling active runs, closing MCP sessions and stores) on exit.
    """
    owned = getattr(app.state, "supervisor", None) is None
    if owned:
        logger.info("Starting up AgentDesk-AI orchestration core...")
        app.state.supervisor = await build_supervisor(get_settings())

    yield

    logger.info("Shutting down AgentDesk-AI orchestration core...")
    supervisor: Supervisor = app.state.supervisor
    await supervisor.shutdown()
    if owned:
        app.state.supervisor = None


def create_app(supervisor: Optional[Supervisor] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        supervisor: An already assembled Supervisor. When omitted, one is
            built from the environment during application startup.
    """
    app = FastAPI(
        title=constant.PROJECT_NAME,
        description="""
        AgentDesk-AI Command Surface

        Start, poll, cancel and resume supervised agent runs, and inspect the
        tools available to them.
        """,
        version=__version__,
        openapi_url=f"{constant.API_V1_STR}/openapi.json",
        docs_url=f"{constant.API_V1_STR}/docs",
        redoc_url=f"{constant.API_V1_STR}/redoc",
        lifespan=lifespan,
    )
    app.state.supervisor = supervisor

    # The host UI runs on a local origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(runs.router, prefix=f"{constant.API_V1_STR}/runs", tags=["runs"])
    app.include_router(tools.router, prefix=f"{constant.API_V1_STR}/tools", tags=["tools"])
    return app


app = create_app()
