from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from .schemas import McpEndpoint, McpTransportKind


class AsyncMCPTransport(Protocol):
    """Protocol for creating MCP ClientSession connections asynchronously.

    Implementations return an async context manager via ``session(endpoint)``
    that yields an initialized ``ClientSession``.
    """

    def session(self, endpoint: McpEndpoint) -> AsyncContextManager[ClientSession]: ...


class StreamableHttpMCPTransport(AsyncMCPTransport):
    """MCP transport using the streamable HTTP client."""

    def session(self, endpoint: McpEndpoint) -> AsyncContextManager[ClientSession]:
        @asynccontextmanager
        async def _cm() -> AsyncIterator[ClientSession]:
            async with streamablehttp_client(str(endpoint.url)) as (read_stream, write_stream, _close_fn):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    yield session

        return _cm()


class SseMCPTransport(AsyncMCPTransport):
    """MCP transport using the SSE client (MCP over SSE)."""

    def session(self, endpoint: McpEndpoint) -> AsyncContextManager[ClientSession]:
        @asynccontextmanager
        async def _cm() -> AsyncIterator[ClientSession]:
            async with sse_client(str(endpoint.url)) as (read_stream, write_stream):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    yield session

        return _cm()


class StdioMCPTransport(AsyncMCPTransport):
    """MCP transport that spawns the server as a child process and talks over stdio."""

    def session(self, endpoint: McpEndpoint) -> AsyncContextManager[ClientSession]:
        params = StdioServerParameters(
            command=str(endpoint.command),
            args=list(endpoint.args),
            env=endpoint.env,
        )

        @asynccontextmanager
        async def _cm() -> AsyncIterator[ClientSession]:
            async with stdio_client(params) as (read_stream, write_stream):
                async with ClientSession(read_stream, write_stream) as session:
                    await session.initialize()
                    yield session

        return _cm()


def transport_for(endpoint: McpEndpoint) -> AsyncMCPTransport:
    """Pick the transport declared by ``endpoint``."""
    if endpoint.transport == McpTransportKind.stdio:
        return StdioMCPTransport()
    if endpoint.transport == McpTransportKind.sse:
        return SseMCPTransport()
    return StreamableHttpMCPTransport()
