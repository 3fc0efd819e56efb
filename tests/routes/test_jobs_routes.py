from __future__ import annotations

from fastapi.testclient import TestClient

from backend.models.marketplace import JobRepository
from services.marketplace_api.app.main import create_app


def _client() -> TestClient:
    return TestClient(create_app())


def _job_payload(**overrides):
    payload = {
        "title": "Extract tables",
        "category": "Data Processor",
        "tags": ["nlp"],
        "budgetMin": 100,
        "budgetMax": 1000,
        "deadline": "2026-12-31",
        "autoAssign": True,
    }
    payload.update(overrides)
    return payload


def _agent(client: TestClient, **overrides) -> dict:
    payload = {"name": "Agent", "classification": "Other", "address": "0x1"}
    payload.update(overrides)
    return client.post("/api/agents", json=payload).json()


def test_create_job_defaults() -> None:
    client = _client()
    response = client.post("/api/jobs", json=_job_payload())
    assert response.status_code == 201
    job = response.json()
    assert job["status"] == "PENDING"
    assert job["agentId"] is None
    assert job["paymentType"] == "Fixed"
    assert job["priority"] == "Medium Priority"
    assert job["skillLevel"] == "Intermediate"
    assert job["deadline"] == "2026-12-31"
    assert client.get(f"/api/jobs/{job['id']}").json() == job


def test_inverted_budget_is_rejected_without_storing(jobs: JobRepository) -> None:
    client = _client()
    response = client.post("/api/jobs", json=_job_payload(budgetMin=1000, budgetMax=100))
    assert response.status_code == 422
    assert jobs.list() == []
    assert client.get("/api/jobs").json() == []


def test_status_update_by_path_and_body() -> None:
    client = _client()
    job = client.post("/api/jobs", json=_job_payload()).json()

    running = client.patch(f"/api/jobs/{job['id']}/status/RUNNING")
    assert running.status_code == 200
    assert running.json()["status"] == "RUNNING"

    completed = client.patch(f"/api/jobs/{job['id']}/status", json={"status": "COMPLETED"})
    assert completed.json()["status"] == "COMPLETED"

    # permissive: a finished job may be reopened
    reopened = client.patch(f"/api/jobs/{job['id']}/status/PENDING")
    assert reopened.json()["status"] == "PENDING"


def test_invalid_status_and_unknown_job() -> None:
    client = _client()
    job = client.post("/api/jobs", json=_job_payload()).json()
    assert client.patch(f"/api/jobs/{job['id']}/status/DONE").status_code == 422
    assert client.get(f"/api/jobs/{job['id']}").json()["status"] == "PENDING"
    assert client.patch("/api/jobs/missing/status/RUNNING").status_code == 404
    assert client.get("/api/jobs/missing").status_code == 404
    assert client.delete("/api/jobs/missing").status_code == 404


def test_strict_lifecycle_returns_conflict(monkeypatch) -> None:
    from orchestrator.config import reset_settings

    monkeypatch.setenv("MARKETPLACE_LIFECYCLE_STRICT", "1")
    reset_settings()
    client = _client()
    job = client.post("/api/jobs", json=_job_payload()).json()
    assert client.patch(f"/api/jobs/{job['id']}/status/COMPLETED").status_code == 409


def test_manual_assignment_and_conflict() -> None:
    client = _client()
    first = _agent(client)
    second = _agent(client, name="Other agent")
    job = client.post("/api/jobs", json=_job_payload(autoAssign=False)).json()

    assigned = client.patch(f"/api/jobs/{job['id']}", json={"agentId": first["id"], "title": "Renamed"})
    assert assigned.status_code == 200
    assert assigned.json()["agentId"] == first["id"]
    assert assigned.json()["title"] == "Renamed"

    # re-sending the same agent is a no-op
    assert client.patch(f"/api/jobs/{job['id']}", json={"agentId": first["id"]}).status_code == 200

    conflict = client.patch(f"/api/jobs/{job['id']}", json={"agentId": second["id"]})
    assert conflict.status_code == 409
    assert client.get(f"/api/jobs/{job['id']}").json()["agentId"] == first["id"]


def test_assignment_requires_known_agent() -> None:
    client = _client()
    job = client.post("/api/jobs", json=_job_payload()).json()
    assert client.patch(f"/api/jobs/{job['id']}", json={"agentId": "ghost"}).status_code == 404
    assert client.post("/api/jobs", json=_job_payload(agentId="ghost")).status_code == 404
    assert len(client.get("/api/jobs").json()) == 1


def test_create_job_with_agent_is_not_eligible(jobs: JobRepository) -> None:
    client = _client()
    agent = _agent(client)
    job = client.post("/api/jobs", json=_job_payload(agentId=agent["id"])).json()
    assert job["agentId"] == agent["id"]
    assert jobs.list_eligible() == []


def test_update_rejects_inverted_budget() -> None:
    client = _client()
    job = client.post("/api/jobs", json=_job_payload(budgetMin=100, budgetMax=200)).json()
    assert client.patch(f"/api/jobs/{job['id']}", json={"budgetMin": 500}).status_code == 422
    assert client.patch(f"/api/jobs/{job['id']}", json={"budgetMin": 500, "budgetMax": 300}).status_code == 422
    assert client.get(f"/api/jobs/{job['id']}").json()["budgetMin"] == 100


def test_paginated_listing() -> None:
    client = _client()
    for index in range(3):
        client.post("/api/jobs", json=_job_payload(title=f"Job {index}", priority="High Priority"))
    client.post("/api/jobs", json=_job_payload(title="Translate", category="Translator"))

    page = client.get("/api/jobs/paginated", params={"page": 1, "pageSize": 2, "priority": "High Priority"}).json()
    assert page["total"] == 3
    assert page["totalPages"] == 2
    assert [job["title"] for job in page["data"]] == ["Job 2", "Job 1"]

    search = client.get("/api/jobs/paginated", params={"search": "Transl"}).json()
    assert [job["category"] for job in search["data"]] == ["Translator"]

    assert client.get("/api/jobs/paginated", params={"pageSize": 500}).status_code == 422
    assert client.get("/api/jobs/paginated", params={"status": "UNKNOWN"}).status_code == 422


def test_delete_job() -> None:
    client = _client()
    job = client.post("/api/jobs", json=_job_payload()).json()
    assert client.delete(f"/api/jobs/{job['id']}").json()["id"] == job["id"]
    assert client.get("/api/jobs").json() == []


def test_job_reads_embed_the_assigned_agent() -> None:
    client = _client()
    agent = _agent(client, name="Scribe", description="Reads invoices")
    assigned = client.post("/api/jobs", json=_job_payload(agentId=agent["id"])).json()
    open_job = client.post("/api/jobs", json=_job_payload(title="Open")).json()

    detail = client.get(f"/api/jobs/{assigned['id']}").json()
    assert detail["agent"]["id"] == agent["id"]
    assert detail["agent"]["name"] == "Scribe"
    assert detail["agent"]["address"] == "0x1"
    assert detail["agent"]["description"] == "Reads invoices"
    assert client.get(f"/api/jobs/{open_job['id']}").json()["agent"] is None

    listed = {job["id"]: job["agent"] for job in client.get("/api/jobs").json()}
    assert listed[assigned["id"]]["id"] == agent["id"]
    assert listed[open_job["id"]] is None

    page = client.get("/api/jobs/paginated").json()
    assert {job["id"]: (job["agent"] or {}).get("id") for job in page["data"]} == {
        assigned["id"]: agent["id"],
        open_job["id"]: None,
    }


def test_deleted_agent_is_embedded_as_null() -> None:
    client = _client()
    agent = _agent(client)
    job = client.post("/api/jobs", json=_job_payload(agentId=agent["id"])).json()
    assert job["agent"]["id"] == agent["id"]

    client.delete(f"/api/agents/{agent['id']}")

    detail = client.get(f"/api/jobs/{job['id']}").json()
    assert detail["agentId"] == agent["id"]
    assert detail["agent"] is None


def test_rejected_reassignment_leaves_other_fields_untouched() -> None:
    client = _client()
    first = _agent(client)
    second = _agent(client, name="Second")
    job = client.post("/api/jobs", json=_job_payload(agentId=first["id"])).json()

    response = client.patch(
        f"/api/jobs/{job['id']}",
        json={"agentId": second["id"], "title": "Changed", "budgetMax": 5000},
    )

    assert response.status_code == 409
    stored = client.get(f"/api/jobs/{job['id']}").json()
    assert stored["title"] == "Extract tables"
    assert stored["budgetMax"] == 1000
    assert stored["agentId"] == first["id"]


def test_routes_are_served_under_api_prefix() -> None:
    client = _client()
    assert client.get("/api/jobs").status_code == 200
    assert client.get("/jobs").status_code == 404
    assert client.get("/healthz").status_code == 200
