"""
API Schemas.

This module contains Pydantic models used for request bodies and responses of
the host command surface.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from agentdesk_ai.agent_core.schemas.domain import AgentKind


class RunBudget(BaseModel):
    """Optional per-run overrides of the Supervisor's budgets."""

    project_root: Optional[str] = Field(
        default=None,
        description="Storage root for the project; defaults to <storage.root>/<project_id>.",
    )
    max_turns: Optional[int] = Field(default=None, ge=1, description="Planning phases allowed for this run.")
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Wall-clock budget for this run.")


class RunCreate(RunBudget):
    """
    Schema for starting a new top-level run.

    At most one top-level run may be active per project.
    """

    intent: Union[str, Dict[str, Any]] = Field(
        ...,
        description="Natural-language intent or a structured task payload.",
        examples=["Fetch patent EP1234567 and store its abstract"],
    )
    agent: AgentKind = Field(default=AgentKind.reasoning, description="Agent configuration to run.")
    project_id: str = Field(..., min_length=1, description="Project the run belongs to.", examples=["acme"])

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "intent": "Fetch patent EP1234567 and store its abstract",
                "agent": "reasoning",
                "project_id": "acme",
                "max_turns": 20,
            }
        }
    )


class RunResume(RunBudget):
    """Schema for re-driving a checkpointed run after a restart."""

    project_id: str = Field(..., min_length=1, description="Project the run belongs to.")


class RunCreated(BaseModel):
    run_id: str
    project_id: str


class RunCancelled(BaseModel):
    run_id: str
    cancelled: bool = Field(description="False when the run had already finished.")


class ToolInfo(BaseModel):
    """Registered tool as exposed to the host."""

    name: str
    description: str = ""
    handler: str
    capabilities: List[str] = Field(default_factory=list)
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    output_schema: Optional[Dict[str, Any]] = None
