"""AgentDesk-AI.

The orchestration core behind a desktop agent workspace: it turns a user
intent into a supervised, persisted agent run.

High-level architecture
-----------------------

- ``agentdesk_ai.supervisor``: the host-facing entry point. Starts, cancels,
  polls and resumes runs; enforces one active run per project plus turn and
  wall-clock budgets.
- ``agentdesk_ai.agent_core``: a LangGraph state machine (Planning, Acting,
  Observing, Delegating) driving a reasoning and a coding agent configuration.
- ``agentdesk_ai.tools``: the Tool Registry and the Dispatcher that validates
  Tool Calls and routes them to local, sandbox or MCP handlers.
- ``agentdesk_ai.sandbox``: runs agent-authored scripts in resource-limited
  OS processes confined to a per-run scratch directory.
- ``agentdesk_ai.mcp``: exposes remote MCP tool servers as registry entries.
- ``agentdesk_ai.memory``: durable per-project key/value memory with
  revisions and an append-only history.
- ``agentdesk_ai.server``: a FastAPI command surface for the host.

Typical workflow
----------------

1. ``supervisor = await build_supervisor(settings)``.
2. ``run_id = await supervisor.start(intent, "reasoning", project_id)``.
3. Poll ``supervisor.status(run_id)`` or ``await supervisor.wait(run_id)``.
4. After a restart, ``await supervisor.resume(run_id, project_id)``.
"""

__version__ = "0.1.0"
