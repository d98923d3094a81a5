"""
Exception Handlers for the FastAPI Application.

``AgentDeskError`` subclasses are returned as JSON bodies carrying their
``ErrorKind`` with a matching HTTP status. Every other exception is logged
with request context and answered with a 500 and an error id.
"""

from typing import Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agentdesk_ai.core.errors import AgentDeskError, ErrorKind
from agentdesk_ai.core.logging_config import get_logger

logger = get_logger(__name__)

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.run_not_found: 404,
    ErrorKind.run_already_active: 409,
    ErrorKind.invalid_state_transition: 409,
    ErrorKind.registry_locked: 409,
    ErrorKind.duplicate_tool: 409,
    ErrorKind.conflict: 409,
    ErrorKind.schema_validation: 422,
    ErrorKind.persistence_failure: 503,
    ErrorKind.transport: 502,
}


async def agentdesk_exception_handler(request: Request, exc: AgentDeskError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 400)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.kind.value}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind.value, "details": exc.details},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Log an unhandled exception with request context.

    Returns:
        JSONResponse with an error id clients can quote when reporting issues.
    """
    error_id = id(exc)
    logger.error(
        f"Unhandled exception [{error_id}] in {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the domain and fallback exception handlers with ``app``."""
    app.add_exception_handler(AgentDeskError, agentdesk_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
