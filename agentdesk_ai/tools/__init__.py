"""Typed tool invocation.

 - ``ToolRegistry``: name -> ``ToolDescriptor`` with a closed registration phase.
 - ``ToolDispatcher``: validates ``ToolCall``s and routes them to local,
   sandbox or MCP handlers, returning a ``ToolResult``.
 - ``builtin_tools``: ``web_fetch``, ``memory_read`` and ``run_script``.
 """

from .base import (
    Capability,
    LocalHandler,
    McpHandler,
    SandboxHandler,
    ToolCall,
    ToolContext,
    ToolDescriptor,
    ToolError,
    ToolResult,
    capability_set,
)
from .builtin import MemoryReadTool, RunScriptTool, WebFetchTool, builtin_tools
from .dispatcher import ToolDispatcher, schema_errors
from .registry import ToolRegistry

__all__ = [
    "Capability",
    "LocalHandler",
    "McpHandler",
    "MemoryReadTool",
    "RunScriptTool",
    "SandboxHandler",
    "ToolCall",
    "ToolContext",
    "ToolDescriptor",
    "ToolDispatcher",
    "ToolError",
    "ToolRegistry",
    "ToolResult",
    "WebFetchTool",
    "builtin_tools",
    "capability_set",
    "schema_errors",
]
