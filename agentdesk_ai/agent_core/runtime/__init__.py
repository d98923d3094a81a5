from .engine import AgentEngine
from .models import EngineDeps, RunHandle, RunHooks

__all__ = ["AgentEngine", "EngineDeps", "RunHandle", "RunHooks"]
