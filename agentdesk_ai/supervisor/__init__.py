"""Top-level run orchestration.

 - ``Supervisor``: starts, cancels, polls and resumes runs and enforces the
   per-project, turn and wall-clock budgets.
 - ``build_supervisor``: assembles a supervisor from ``AgentDeskSettings``.
 """

from .factory import build_supervisor, planner_from_config
from .supervisor import RunStatus, Supervisor

__all__ = ["RunStatus", "Supervisor", "build_supervisor", "planner_from_config"]
