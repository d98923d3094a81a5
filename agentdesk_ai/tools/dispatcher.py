from __future__ import annotations

"""Tool dispatcher.

Validates a ``ToolCall`` and routes it to the handler named by its
descriptor, then normalizes the outcome into a ``ToolResult``.

Checks run in a fixed order and stop at the first failure:

1. the issuing run is not terminal (``RunTerminated``);
2. the call id is new for the run (``DuplicateCallId``);
3. the tool exists (``ToolNotFound``);
4. the tool's capability tags are within the run's allow-list
   (``CapabilityDenied``);
5. the arguments satisfy the input schema (``SchemaValidationError``); the
   handler is never invoked when this fails.

Per-call failures are returned, never raised. ``PersistenceFailure`` is the
exception: it is fatal to the run and propagates to the runtime.
"""

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ..core.config import DispatcherConfig
from ..core.errors import AgentDeskError, ErrorKind, PersistenceFailure, TransportError
from ..sandbox.models import ResourceLimits, SandboxJob, SandboxStatus, ScriptLanguage
from .base import (
    LocalHandler,
    McpHandler,
    SandboxHandler,
    ToolCall,
    ToolContext,
    ToolDescriptor,
    ToolResult,
)
from .registry import ToolRegistry

if TYPE_CHECKING:
    from ..mcp.gateway import McpGateway
    from ..memory.project import Project
    from ..sandbox.executor import SandboxExecutor

logger = logging.getLogger(__name__)


def schema_errors(schema: Optional[Dict[str, Any]], payload: Any) -> List[str]:
    """Return human-readable JSON Schema violations (empty when valid)."""
    if not schema:
        return []
    try:
        validator = Draft202012Validator(schema)
    except SchemaError as exc:
        return [f"invalid schema: {exc.message}"]
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.absolute_path))
    messages = []
    for e in errors:
        where = "/".join(str(p) for p in e.absolute_path)
        messages.append(f"{where}: {e.message}" if where else e.message)
    return messages


class ToolDispatcher:
    """Route validated Tool Calls to local, sandbox or MCP handlers."""

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        executor: Optional[SandboxExecutor] = None,
        gateway: Optional[McpGateway] = None,
        config: Optional[DispatcherConfig] = None,
    ) -> None:
        self._registry = registry
        self._executor = executor
        self._gateway = gateway
        self._config = config or DispatcherConfig()
        self._seen: Dict[str, Set[str]] = {}

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def forget_run(self, run_id: str) -> None:
        """Drop the call-id ledger of a finished run."""
        self._seen.pop(run_id, None)

    async def dispatch(
        self,
        call: ToolCall,
        *,
        project: Optional[Project] = None,
        allowed_capabilities: Optional[Iterable[str]] = None,
        terminated: bool = False,
    ) -> ToolResult:
        """
        Execute one Tool Call.

        Args:
            call: The request; ``call.run_id`` identifies the issuing run.
            project: The run's project; required by sandbox handlers.
            allowed_capabilities: The run's capability allow-list, or None for no restriction.
            terminated: True when the issuing run already reached a terminal state.

        Returns:
            The ``ToolResult``; failures carry a typed ``ToolError``.

        Raises:
            PersistenceFailure: Writing sandbox artifacts to memory failed.
        """
        if terminated:
            return ToolResult.failure(call, ErrorKind.run_terminated, f"run '{call.run_id}' is terminal")

        seen = self._seen.setdefault(call.run_id, set())
        if call.id in seen:
            return ToolResult.failure(call, ErrorKind.duplicate_call_id, f"call id '{call.id}' was already issued")
        seen.add(call.id)

        descriptor = self._registry.lookup(call.tool)
        if descriptor is None:
            return ToolResult.failure(call, ErrorKind.tool_not_found, f"unknown tool '{call.tool}'")

        if allowed_capabilities is not None:
            denied = sorted(set(descriptor.capabilities) - set(allowed_capabilities))
            if denied:
                return ToolResult.failure(
                    call,
                    ErrorKind.capability_denied,
                    f"tool '{call.tool}' requires capabilities not granted to this run",
                    details={"denied": denied},
                )

        problems = schema_errors(descriptor.input_schema, call.args)
        if problems:
            logger.debug("Rejected %s call %s: %s", call.tool, call.id, problems)
            return ToolResult.failure(
                call,
                ErrorKind.schema_validation,
                f"arguments for '{call.tool}' do not match its input schema",
                details={"errors": problems},
            )

        result = await self._invoke_with_retry(descriptor, call, project)
        if result.ok and descriptor.output_schema:
            problems = schema_errors(descriptor.output_schema, result.output)
            if problems:
                return ToolResult.failure(
                    call,
                    ErrorKind.schema_validation,
                    f"output of '{call.tool}' does not match its output schema",
                    details={"errors": problems, "output": True},
                )
        return result

    async def _invoke_with_retry(
        self,
        descriptor: ToolDescriptor,
        call: ToolCall,
        project: Optional[Project],
    ) -> ToolResult:
        for attempt in (1, 2):
            try:
                return await self._invoke(descriptor, call, project)
            except TransportError as exc:
                if attempt == 2:
                    logger.warning("Tool %s failed after retry: %s", call.tool, exc)
                    return ToolResult.failure(call, exc.kind, exc.message, details=exc.details)
                logger.info("Transport error on %s; retrying once: %s", call.tool, exc)
                await asyncio.sleep(self._config.transport_retry_backoff_seconds)
            except PersistenceFailure:
                raise
            except AgentDeskError as exc:
                return ToolResult.failure(call, exc.kind, exc.message, details=exc.details)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Tool %s raised", call.tool)
                return ToolResult.failure(
                    call,
                    ErrorKind.tool_execution,
                    f"{type(exc).__name__}: {exc}",
                )
        raise AssertionError("unreachable")

    async def _invoke(
        self,
        descriptor: ToolDescriptor,
        call: ToolCall,
        project: Optional[Project],
    ) -> ToolResult:
        handler = descriptor.handler
        if handler.kind == "local":
            assert isinstance(handler, LocalHandler)
            ctx = ToolContext(run_id=call.run_id, call_id=call.id, project=project)
            output = await handler.fn(ctx, dict(call.args))
            return ToolResult.success(call, output)
        elif handler.kind == "sandbox":
            assert isinstance(handler, SandboxHandler)
            return await self._run_sandbox(handler, call, project)
        elif handler.kind == "mcp":
            assert isinstance(handler, McpHandler)
            if self._gateway is None:
                return ToolResult.failure(call, ErrorKind.transport, "no MCP gateway configured")
            session = self._gateway.session_for(handler.endpoint)
            output = await self._gateway.invoke(
                session,
                handler.remote_name,
                dict(call.args),
                timeout=self._config.mcp_call_timeout_seconds,
            )
            return ToolResult.success(call, output)
        raise ValueError(f"unknown handler kind: {handler.kind!r}")

    async def _run_sandbox(self, handler: SandboxHandler, call: ToolCall, project: Optional[Project]) -> ToolResult:
        if self._executor is None or project is None:
            return ToolResult.failure(call, ErrorKind.tool_execution, "sandbox execution is not available for this run")

        job = self._build_job(handler, call)
        result = await self._executor.run(job, scratch_dir=project.scratch_dir(call.run_id), store=project.store)
        output = result.to_output()
        if result.status == SandboxStatus.succeeded:
            return ToolResult.success(call, output)
        kind = result.status.error_kind or ErrorKind.tool_execution
        message = result.detail or f"sandbox job {result.status.value}"
        if result.status == SandboxStatus.failed and result.exit_code is not None:
            message = f"script exited with status {result.exit_code}"
        return ToolResult.failure(call, kind, message, output=output)

    def _build_job(self, handler: SandboxHandler, call: ToolCall) -> SandboxJob:
        args = dict(call.args)
        limits = handler.limits
        if isinstance(args.get("limits"), dict):
            limits = limits.model_copy(update=ResourceLimits.model_validate(args["limits"]).model_dump(exclude_none=True))
        artifacts = list(handler.artifacts) + [str(a) for a in args.get("artifacts") or []]
        if handler.template is not None:
            return SandboxJob(
                run_id=call.run_id,
                language=handler.language,
                source=handler.template,
                stdin=json.dumps(args),
                limits=limits,
                artifacts=artifacts,
            )
        return SandboxJob(
            run_id=call.run_id,
            language=ScriptLanguage(args.get("language") or handler.language),
            source=args.get("source"),
            path=args.get("path"),
            stdin=args.get("stdin"),
            limits=limits,
            artifacts=artifacts,
        )
