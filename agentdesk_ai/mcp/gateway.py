"""MCP Gateway

Exposes remote MCP tool servers as entries in the ``ToolRegistry``.

- ``connect(endpoint)`` opens a session, lists the remote tools and registers
  each as ``<prefix>.<tool>`` with an ``McpHandler``.
- ``invoke(session, tool, args, timeout)`` calls a remote tool. Connection loss
  raises ``TransportError`` and marks the session broken; the next invoke
  reopens it. Remote error results raise ``RemoteToolError``.
- ``disconnect(session)`` closes the session and unregisters its tools.

Each session is owned by a dedicated task that enters and exits the SDK's
transport contexts, so sessions can be opened and closed from any task.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import anyio
import httpx
from mcp import ClientSession
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED, CallToolResult

from ..core.errors import RemoteToolError, TimedOut, TransportError
from ..tools.base import Capability, McpHandler, ToolDescriptor, capability_set
from ..tools.registry import ToolRegistry
from .schemas import McpEndpoint
from .transport import AsyncMCPTransport, transport_for

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    httpx.TransportError,
    ConnectionError,
    OSError,
)


@dataclass
class _Connection:
    client: Optional[ClientSession] = None
    task: Optional["asyncio.Task[None]"] = None
    closing: asyncio.Event = field(default_factory=asyncio.Event)
    broken: bool = False


@dataclass
class McpSession:
    """Handle for one connected endpoint."""

    endpoint: McpEndpoint
    tool_names: List[str] = field(default_factory=list)
    _conn: Optional[_Connection] = None

    @property
    def name(self) -> str:
        return self.endpoint.name

    @property
    def broken(self) -> bool:
        return self._conn is None or self._conn.broken

    def mark_broken(self) -> None:
        if self._conn is not None:
            self._conn.broken = True


class McpGateway:
    """Client adapter that merges remote MCP tools into a ``ToolRegistry``."""

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        transport_factory: Callable[[McpEndpoint], AsyncMCPTransport] = transport_for,
        connect_timeout: float = 30.0,
        call_timeout: float = 30.0,
    ) -> None:
        self._registry = registry
        self._transport_factory = transport_factory
        self._connect_timeout = connect_timeout
        self._call_timeout = call_timeout
        self._sessions: Dict[str, McpSession] = {}

    def sessions(self) -> List[McpSession]:
        return list(self._sessions.values())

    def session_for(self, endpoint_name: str) -> McpSession:
        try:
            return self._sessions[endpoint_name]
        except KeyError:
            raise TransportError(f"MCP endpoint '{endpoint_name}' is not connected") from None

    async def connect(self, endpoint: McpEndpoint) -> McpSession:
        """
        Open a session to ``endpoint`` and register its tools.

        Raises:
            TransportError: The server could not be reached or initialized.
            RegistryLocked: A run currently holds the registry.
            DuplicateTool: A remote tool collides with an existing name.
        """
        if endpoint.name in self._sessions:
            return self._sessions[endpoint.name]

        session = McpSession(endpoint=endpoint)
        await self._open(session)
        try:
            descriptors = await self.list_remote_tools(session)
            for descriptor in descriptors:
                self._registry.register(descriptor)
                session.tool_names.append(descriptor.name)
        except BaseException:
            if session.tool_names:
                self._registry.unregister(session.tool_names)
            await self._close_connection(session)
            raise

        self._sessions[endpoint.name] = session
        logger.info("Connected MCP endpoint %s with %d tool(s)", endpoint.name, len(session.tool_names))
        return session

    async def list_remote_tools(self, session: McpSession) -> List[ToolDescriptor]:
        """List the remote tools of ``session`` as prefixed descriptors."""
        client = await self._client(session)
        try:
            listed = await client.list_tools()
        except McpError as exc:
            raise self._map_mcp_error(session, exc) from exc
        except _CONNECTION_ERRORS as exc:
            session.mark_broken()
            raise TransportError(f"Lost connection to MCP endpoint '{session.name}': {exc}") from exc

        prefix = session.endpoint.tool_prefix
        tags = capability_set([Capability.mcp, *session.endpoint.capabilities])
        descriptors: List[ToolDescriptor] = []
        for tool in listed.tools:
            descriptors.append(
                ToolDescriptor(
                    name=f"{prefix}.{tool.name}",
                    handler=McpHandler(endpoint=session.name, remote_name=tool.name),
                    input_schema=dict(tool.inputSchema or {"type": "object"}),
                    output_schema=dict(tool.outputSchema) if getattr(tool, "outputSchema", None) else None,
                    capabilities=tags,
                    description=tool.description or "",
                )
            )
        return descriptors

    async def invoke(
        self,
        session: McpSession,
        tool_name: str,
        args: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Call ``tool_name`` (the remote, unprefixed name) on ``session``.

        Returns:
            The tool's structured content when present, otherwise
            ``{"text": ..., "content": [...]}`` built from its content blocks.

        Raises:
            TransportError: Connection lost; the session is reopened on the next call.
            RemoteToolError: The server returned an error result.
            TimedOut: No response within ``timeout`` seconds.
        """
        client = await self._client(session)
        limit = timeout or self._call_timeout
        logger.debug("MCP invoke %s.%s args_keys=%s", session.name, tool_name, list(args.keys()))
        try:
            result = await asyncio.wait_for(client.call_tool(tool_name, args), timeout=limit)
        except asyncio.TimeoutError as exc:
            raise TimedOut(f"MCP tool '{session.name}.{tool_name}' did not answer within {limit}s") from exc
        except McpError as exc:
            raise self._map_mcp_error(session, exc) from exc
        except _CONNECTION_ERRORS as exc:
            session.mark_broken()
            raise TransportError(f"Lost connection to MCP endpoint '{session.name}': {exc}") from exc

        if result.isError:
            raise RemoteToolError(
                f"MCP tool '{session.name}.{tool_name}' returned an error",
                details=_result_output(result),
            )
        return _result_output(result)

    async def disconnect(self, session: McpSession) -> None:
        """Close ``session`` and unregister its tools."""
        self._sessions.pop(session.name, None)
        if session.tool_names:
            self._registry.unregister(session.tool_names)
            session.tool_names.clear()
        await self._close_connection(session)
        logger.info("Disconnected MCP endpoint %s", session.name)

    async def close(self) -> None:
        """Close every session without touching the registry."""
        for session in list(self._sessions.values()):
            await self._close_connection(session)
        self._sessions.clear()

    async def _client(self, session: McpSession) -> ClientSession:
        if session.broken:
            logger.info("Reopening MCP session %s", session.name)
            await self._close_connection(session)
            await self._open(session)
        assert session._conn is not None and session._conn.client is not None
        return session._conn.client

    async def _open(self, session: McpSession) -> None:
        conn = _Connection()
        ready: "asyncio.Future[ClientSession]" = asyncio.get_running_loop().create_future()
        transport = self._transport_factory(session.endpoint)

        async def _own() -> None:
            try:
                async with transport.session(session.endpoint) as client:
                    ready.set_result(client)
                    await conn.closing.wait()
            except Exception as exc:
                if not ready.done():
                    ready.set_exception(exc)
                else:
                    logger.warning("MCP session %s ended: %s", session.name, exc)
            finally:
                conn.broken = True

        conn.task = asyncio.create_task(_own(), name=f"mcp-session:{session.name}")
        try:
            conn.client = await asyncio.wait_for(asyncio.shield(ready), timeout=self._connect_timeout)
        except Exception as exc:
            conn.closing.set()
            conn.task.cancel()
            raise TransportError(f"Cannot connect to MCP endpoint '{session.name}': {exc}") from exc
        session._conn = conn

    async def _close_connection(self, session: McpSession) -> None:
        conn = session._conn
        session._conn = None
        if conn is None or conn.task is None:
            return
        conn.closing.set()
        try:
            await asyncio.wait_for(conn.task, timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            logger.warning("MCP session %s did not close in time; cancelling", session.name)
            conn.task.cancel()

    def _map_mcp_error(self, session: McpSession, exc: McpError) -> Exception:
        if exc.error.code == CONNECTION_CLOSED:
            session.mark_broken()
            return TransportError(f"MCP endpoint '{session.name}' closed the connection: {exc.error.message}")
        return RemoteToolError(
            f"MCP endpoint '{session.name}' rejected the request: {exc.error.message}",
            details={"code": exc.error.code},
        )


def _result_output(result: CallToolResult) -> Any:
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return structured
    blocks = [block.model_dump(mode="json") for block in result.content]
    text = "\n".join(b.get("text", "") for b in blocks if b.get("type") == "text")
    return {"text": text, "content": blocks}
