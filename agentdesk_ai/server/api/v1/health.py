"""
Health Check Endpoints.

Basic status endpoints used by the host to verify the core is reachable.
"""

from fastapi import APIRouter

from agentdesk_ai import __version__

router = APIRouter()


@router.get(
    "/health",
    summary="Health Check",
    description="Check the operational status of the orchestration core.",
    response_description="Status object.",
)
async def health_check():
    return {"status": "ok"}


@router.get(
    "/version",
    summary="Get Version",
    description="Retrieve version information for the orchestration core.",
    response_description="Version object.",
)
async def version():
    return {"version": __version__, "schema_version": "v1"}
