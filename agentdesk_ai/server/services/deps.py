"""
Supervisor Dependency.

Provides the application's ``Supervisor`` to API endpoints. The instance is
created by the lifespan handler (or injected by ``create_app``) and stored on
``app.state``.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from agentdesk_ai.supervisor import Supervisor


def get_supervisor(request: Request) -> Supervisor:
    supervisor = getattr(request.app.state, "supervisor", None)
    if supervisor is None:
        raise HTTPException(status_code=503, detail="Supervisor is not ready")
    return supervisor


SupervisorDep = Annotated[Supervisor, Depends(get_supervisor)]
