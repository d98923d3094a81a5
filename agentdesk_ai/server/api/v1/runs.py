"""
Agent Runs API Endpoints.

The host's interface for starting, polling, cancelling and resuming agent
runs. Domain errors raised by the Supervisor are translated into HTTP status
codes by ``agentdesk_ai.server.exception_handlers``.
"""

from pathlib import Path
from typing import Optional

from fastapi import APIRouter

from agentdesk_ai.core.logging_config import get_logger
from agentdesk_ai.server.schemas import RunCancelled, RunCreate, RunCreated, RunResume
from agentdesk_ai.server.services.deps import SupervisorDep
from agentdesk_ai.supervisor import RunStatus

logger = get_logger(__name__)
router = APIRouter()


def _path(value: Optional[str]) -> Optional[Path]:
    return Path(value) if value else None


@router.post(
    "/",
    response_model=RunCreated,
    status_code=201,
    summary="Start Agent Run",
    description="Start a top-level run for an intent. Fails with 409 while the project has an active run.",
    responses={409: {"description": "Project already has an active run"}},
)
async def create_run(run_in: RunCreate, supervisor: SupervisorDep):
    logger.info(f"Starting {run_in.agent.value} run for project: {run_in.project_id}")
    run_id = await supervisor.start(
        run_in.intent,
        run_in.agent,
        run_in.project_id,
        project_root=_path(run_in.project_root),
        max_turns=run_in.max_turns,
        timeout_seconds=run_in.timeout_seconds,
    )
    return RunCreated(run_id=run_id, project_id=run_in.project_id)


@router.get(
    "/{run_id}",
    response_model=RunStatus,
    summary="Get Run Status",
    description=(
        "Current state, latest step and most specific error of a run. Runs driven by an earlier "
        "process are read from their checkpoint when project_id is given."
    ),
    responses={404: {"description": "Run not found"}},
)
async def get_run(
    run_id: str,
    supervisor: SupervisorDep,
    project_id: Optional[str] = None,
    project_root: Optional[str] = None,
):
    if project_id is None:
        return supervisor.status(run_id)
    return await supervisor.load_status(run_id, project_id, project_root=_path(project_root))


@router.post(
    "/{run_id}/cancel",
    response_model=RunCancelled,
    summary="Cancel Run",
    description="Cancel a run; cancellation cascades to any delegated child run and sandbox job.",
    responses={404: {"description": "Run not found"}},
)
async def cancel_run(run_id: str, supervisor: SupervisorDep):
    cancelled = supervisor.cancel(run_id)
    logger.info(f"Cancel requested for run {run_id} (active={cancelled})")
    return RunCancelled(run_id=run_id, cancelled=cancelled)


@router.post(
    "/{run_id}/resume",
    response_model=RunCreated,
    summary="Resume Run",
    description="Re-drive a checkpointed, non-terminal run after a restart.",
    responses={
        404: {"description": "No checkpoint for this run"},
        409: {"description": "The run is terminal or its project has an active run"},
    },
)
async def resume_run(run_id: str, resume_in: RunResume, supervisor: SupervisorDep):
    await supervisor.resume(
        run_id,
        resume_in.project_id,
        project_root=_path(resume_in.project_root),
        max_turns=resume_in.max_turns,
        timeout_seconds=resume_in.timeout_seconds,
    )
    return RunCreated(run_id=run_id, project_id=resume_in.project_id)
