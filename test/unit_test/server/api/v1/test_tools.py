import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def test_list_tools(client: AsyncClient):
    response = await client.get("/api/v1/tools/")
    assert response.status_code == 200
    tools = response.json()
    assert [t["name"] for t in tools] == ["wait"]
    assert tools[0]["handler"] == "local"
    assert tools[0]["capabilities"] == ["memory"]


async def test_filter_by_capability(client: AsyncClient):
    response = await client.get("/api/v1/tools/", params={"capability": "network"})
    assert response.status_code == 200
    assert response.json() == []
