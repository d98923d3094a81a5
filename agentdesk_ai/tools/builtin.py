from __future__ import annotations

import codecs
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import ToolExecutionError, TransportError
from ..sandbox.models import ScriptLanguage
from .base import (
    Capability,
    LocalHandler,
    SandboxHandler,
    ToolContext,
    ToolDescriptor,
    capability_set,
)


@dataclass(frozen=True)
class WebFetchTool:
    """
    Fetch a URL over HTTP(S) and return its body as text.

    Network failures raise ``TransportError`` so the dispatcher retries them
    once; HTTP error statuses are reported as ``ToolExecutionError``.
    """

    name: str = "web_fetch"
    client: Optional[httpx.AsyncClient] = None
    timeout: float = 20.0
    max_bytes: int = 1024 * 1024

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            handler=LocalHandler(fn=self.execute),
            input_schema={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "pattern": "^https?://"},
                    "headers": {"type": "object", "additionalProperties": {"type": "string"}},
                },
                "required": ["url"],
                "additionalProperties": False,
            },
            output_schema={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "status_code": {"type": "integer"},
                    "content_type": {"type": ["string", "null"]},
                    "text": {"type": "string"},
                    "truncated": {"type": "boolean"},
                },
                "required": ["url", "status_code", "text"],
            },
            capabilities=capability_set([Capability.network]),
            description="Fetch a web page or API response by URL.",
        )

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        """
        Fetch ``args["url"]``.

        Args:
            ctx: The execution context.
            args: Dictionary of arguments:
                - url (str): The target URL.
                - headers (dict): Optional request headers.

        Returns:
            ``{"url", "status_code", "content_type", "text", "truncated"}``.
        """
        url = str(args["url"])
        headers = dict(args.get("headers") or {})
        client = self.client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            response = await client.get(url, headers=headers)
        except httpx.TransportError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        finally:
            if self.client is None:
                await client.aclose()

        if response.status_code >= 400:
            raise ToolExecutionError(
                f"GET {url} returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )
        body = response.content
        truncated = len(body) > self.max_bytes
        if truncated:
            # A multi-byte character cut at the ceiling is dropped, not replaced.
            decoder = codecs.getincrementaldecoder(response.encoding or "utf-8")(errors="replace")
            text = decoder.decode(body[: self.max_bytes], final=False)
        else:
            text = response.text
        return {
            "url": str(response.url),
            "status_code": response.status_code,
            "content_type": response.headers.get("content-type"),
            "text": text,
            "truncated": truncated,
        }


@dataclass(frozen=True)
class MemoryReadTool:
    """Read one key from the run's project memory."""

    name: str = "memory_read"

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            handler=LocalHandler(fn=self.execute),
            input_schema={
                "type": "object",
                "properties": {"key": {"type": "string", "minLength": 1}},
                "required": ["key"],
                "additionalProperties": False,
            },
            capabilities=capability_set([Capability.memory]),
            description="Read a value and its revision from project memory.",
        )

    async def execute(self, ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
        if ctx.project is None:
            raise ToolExecutionError("memory_read requires a project")
        key = str(args["key"])
        record = await ctx.project.store.read(key)
        if record is None:
            return {"key": key, "found": False, "value": None, "revision": 0}
        return {"key": key, "found": True, "value": record.value, "revision": record.revision}


@dataclass(frozen=True)
class RunScriptTool:
    """Run an agent-authored script in the sandbox (``source`` text or scratch ``path``)."""

    name: str = "run_script"
    default_language: ScriptLanguage = ScriptLanguage.python
    artifacts: List[str] = field(default_factory=list)

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            handler=SandboxHandler(language=self.default_language, artifacts=tuple(self.artifacts)),
            input_schema={
                "type": "object",
                "properties": {
                    "source": {"type": "string"},
                    "path": {"type": "string"},
                    "language": {"enum": [lang.value for lang in ScriptLanguage]},
                    "stdin": {"type": "string"},
                    "artifacts": {"type": "array", "items": {"type": "string"}},
                    "limits": {
                        "type": "object",
                        "properties": {
                            "cpu_seconds": {"type": "number", "exclusiveMinimum": 0},
                            "wall_seconds": {"type": "number", "exclusiveMinimum": 0},
                            "memory_bytes": {"type": "integer", "exclusiveMinimum": 0},
                            "output_bytes": {"type": "integer", "exclusiveMinimum": 0},
                        },
                        "additionalProperties": False,
                    },
                },
                "oneOf": [{"required": ["source"]}, {"required": ["path"]}],
                "additionalProperties": False,
            },
            capabilities=capability_set([Capability.process_spawn, Capability.filesystem]),
            description="Execute a script in an isolated, resource-limited process.",
        )


def builtin_tools(*, http_client: Optional[httpx.AsyncClient] = None) -> List[ToolDescriptor]:
    """Descriptors for the tools every registry starts with."""
    return [
        WebFetchTool(client=http_client).descriptor(),
        MemoryReadTool().descriptor(),
        RunScriptTool().descriptor(),
    ]
