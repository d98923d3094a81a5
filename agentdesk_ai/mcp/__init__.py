"""Remote MCP tool servers exposed through the Tool Registry."""

from .gateway import McpGateway, McpSession
from .schemas import McpEndpoint, McpTransportKind, load_endpoints
from .transport import (
    AsyncMCPTransport,
    SseMCPTransport,
    StdioMCPTransport,
    StreamableHttpMCPTransport,
    transport_for,
)

__all__ = [
    "AsyncMCPTransport",
    "McpEndpoint",
    "McpGateway",
    "McpSession",
    "McpTransportKind",
    "SseMCPTransport",
    "StdioMCPTransport",
    "StreamableHttpMCPTransport",
    "load_endpoints",
    "transport_for",
]
