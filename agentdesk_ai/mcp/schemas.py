"""Endpoint configuration for remote MCP tool servers."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, model_validator

from ..core.schemas import BaseSchema


class McpTransportKind(str, Enum):
    stdio = "stdio"
    streamable_http = "streamable_http"
    sse = "sse"


class McpEndpoint(BaseSchema):
    """
    How to reach one MCP server and how its tools are named locally.

    Remote tools are registered as ``<prefix>.<remote tool name>``; the prefix
    defaults to the endpoint name.
    """

    name: str = Field(..., min_length=1, description="Unique endpoint name")
    transport: McpTransportKind = McpTransportKind.streamable_http
    url: Optional[str] = Field(default=None, description="Endpoint URL for HTTP and SSE transports")
    command: Optional[str] = Field(default=None, description="Server executable for the stdio transport")
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    prefix: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list, description="Extra tags for every remote tool")

    @model_validator(mode="after")
    def _check_target(self) -> "McpEndpoint":
        if self.transport == McpTransportKind.stdio and not self.command:
            raise ValueError("stdio endpoints require 'command'")
        if self.transport != McpTransportKind.stdio and not self.url:
            raise ValueError(f"{self.transport.value} endpoints require 'url'")
        return self

    @property
    def tool_prefix(self) -> str:
        return self.prefix or self.name


def load_endpoints(path: Path) -> List[McpEndpoint]:
    """Read a JSON list of endpoint objects from ``path``."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError(f"{path}: expected a JSON list of MCP endpoints")
    return [McpEndpoint.model_validate(item) for item in payload]
