from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator, Iterable

import httpx
import pytest
import pytest_asyncio
from dotenv import load_dotenv

from agentdesk_ai.core.config import AgentDeskSettings, SandboxConfig, StorageConfig
from agentdesk_ai.memory.project import Project, ProjectManager

TEST_ROOT = Path(__file__).resolve().parent
# Load test/.env first, then fallback to test/.env.example for defaults
load_dotenv(TEST_ROOT / ".env", override=False)
load_dotenv(TEST_ROOT / ".env.example", override=False)


@pytest.fixture(autouse=True)
def _global_offline_http_guard(monkeypatch: pytest.MonkeyPatch):
    allowed_prefixes: Iterable[str] = (
        "http://mock",
        "https://mock",
        "http://localhost",
        "http://127.0.0.1",
        "http://0.0.0.0",
        "/",  # Allow relative paths (used by ASGI transport)
    )

    orig_sync = httpx._client.Client.request
    orig_async = httpx._client.AsyncClient.request

    def _is_allowed(url_str: str) -> bool:
        return any(url_str.startswith(p) for p in allowed_prefixes)

    def offline_sync(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str) or isinstance(self._transport, httpx.MockTransport):
            return orig_sync(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard: {url_str}")

    async def offline_async(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str) or isinstance(self._transport, httpx.MockTransport):
            return await orig_async(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard (async): {url_str}")

    monkeypatch.setattr(httpx._client.Client, "request", offline_sync, raising=True)
    monkeypatch.setattr(httpx._client.AsyncClient, "request", offline_async, raising=True)


@pytest.fixture
def settings(tmp_path: Path) -> AgentDeskSettings:
    """Settings rooted in a temporary directory with short sandbox ceilings."""
    return AgentDeskSettings(
        storage=StorageConfig(root=tmp_path / "projects"),
        sandbox=SandboxConfig(cpu_seconds=10, wall_seconds=20, grace_seconds=0.5),
    )


@pytest_asyncio.fixture
async def projects(settings: AgentDeskSettings) -> AsyncIterator[ProjectManager]:
    manager = ProjectManager(settings.storage)
    yield manager
    await manager.close_all()


@pytest_asyncio.fixture
async def project(projects: ProjectManager) -> Project:
    return await projects.open("test-project")
