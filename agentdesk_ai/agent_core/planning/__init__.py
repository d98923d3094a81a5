from .decisions import (
    Decision,
    DelegateDecision,
    FinishDecision,
    MemoryWrite,
    PlanningContext,
    ToolCallsDecision,
    normalize_decision,
)
from .planner import Planner, PydanticAIPlanner, ScriptedPlanner

__all__ = [
    "Decision",
    "DelegateDecision",
    "FinishDecision",
    "MemoryWrite",
    "Planner",
    "PlanningContext",
    "PydanticAIPlanner",
    "ScriptedPlanner",
    "ToolCallsDecision",
    "normalize_decision",
]
