import asyncio

import pytest
from httpx import AsyncClient

from agentdesk_ai.supervisor import Supervisor

pytestmark = pytest.mark.asyncio


async def _create(client: AsyncClient, intent: str, project_id: str = "acme", **extra):
    return await client.post("/api/v1/runs/", json={"intent": intent, "project_id": project_id, **extra})


async def test_create_and_poll_run(client: AsyncClient, supervisor: Supervisor):
    response = await _create(client, "finish", max_turns=5)
    assert response.status_code == 201
    run_id = response.json()["run_id"]
    assert response.json()["project_id"] == "acme"

    await supervisor.wait(run_id, timeout=5)
    response = await client.get(f"/api/v1/runs/{run_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "succeeded"
    assert data["result"] == "done"
    assert data["agent"] == "reasoning"


async def test_second_run_for_project_conflicts(client: AsyncClient):
    first = await _create(client, "block")
    assert first.status_code == 201

    response = await _create(client, "finish")
    assert response.status_code == 409
    body = response.json()
    assert body["kind"] == "RunAlreadyActive"
    assert body["details"]["run_id"] == first.json()["run_id"]


async def test_unknown_run_is_404(client: AsyncClient):
    response = await client.get("/api/v1/runs/missing")
    assert response.status_code == 404
    assert response.json()["kind"] == "RunNotFound"

    response = await client.post("/api/v1/runs/missing/cancel")
    assert response.status_code == 404


async def test_cancel_run(client: AsyncClient, supervisor: Supervisor):
    run_id = (await _create(client, "block")).json()["run_id"]
    while supervisor.status(run_id).state.value != "acting":
        await asyncio.sleep(0.01)

    response = await client.post(f"/api/v1/runs/{run_id}/cancel")
    assert response.status_code == 200
    assert response.json() == {"run_id": run_id, "cancelled": True}

    await supervisor.wait(run_id, timeout=5)
    data = (await client.get(f"/api/v1/runs/{run_id}")).json()
    assert data["state"] == "cancelled"
    assert data["error"]["kind"] == "Cancelled"


async def test_status_from_checkpoint(client: AsyncClient, supervisor: Supervisor):
    run_id = (await _create(client, "finish")).json()["run_id"]
    await supervisor.wait(run_id, timeout=5)

    response = await client.get(f"/api/v1/runs/{run_id}", params={"project_id": "acme"})
    assert response.status_code == 200
    assert response.json()["state"] == "succeeded"


async def test_resume_terminal_run_conflicts(client: AsyncClient, supervisor: Supervisor):
    run_id = (await _create(client, "finish")).json()["run_id"]
    await supervisor.wait(run_id, timeout=5)

    response = await client.post(f"/api/v1/runs/{run_id}/resume", json={"project_id": "acme"})
    assert response.status_code == 409
    assert response.json()["kind"] == "InvalidStateTransition"


async def test_invalid_body_is_422(client: AsyncClient):
    response = await client.post("/api/v1/runs/", json={"intent": "x"})
    assert response.status_code == 422

    response = await _create(client, "x", max_turns=0)
    assert response.status_code == 422
