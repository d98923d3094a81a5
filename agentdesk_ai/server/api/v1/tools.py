"""
Tool Registry Endpoints.

Read-only listing of the tools every run can see, including remote MCP tools.
"""

from typing import List, Optional

from fastapi import APIRouter

from agentdesk_ai.server.schemas import ToolInfo
from agentdesk_ai.server.services.deps import SupervisorDep

router = APIRouter()


@router.get(
    "/",
    response_model=List[ToolInfo],
    summary="List Tools",
    description="List registered tools in name order, optionally filtered by capability tag.",
)
async def list_tools(supervisor: SupervisorDep, capability: Optional[str] = None):
    return [ToolInfo(**d.summary()) for d in supervisor.registry.list(capability)]
