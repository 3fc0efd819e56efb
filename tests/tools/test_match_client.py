from __future__ import annotations

import json
from typing import Dict, List

import httpx
import pytest

from tools import match_client
from tools.match_client import MatchClient, MatchClientError

BASE_URL = "http://marketplace.test/api"


class _FakeApi:
    """In-memory stand-in for the marketplace HTTP API."""

    def __init__(self) -> None:
        self.jobs: Dict[str, dict] = {
            "job-1": {"id": "job-1", "status": "PENDING", "agentId": None},
            "job-2": {"id": "job-2", "status": "PENDING", "agentId": None},
        }
        self.calls: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(f"{request.method} {path}")
        if request.method == "POST" and path.endswith("/agents/match-jobs"):
            self.jobs["job-1"]["agentId"] = "agent-7"
            return httpx.Response(202, json={"message": "Job matching process started", "runId": "run-1"})
        if request.method == "GET" and path.endswith("/agents/match-jobs/run-1"):
            return httpx.Response(
                200,
                json={"runId": "run-1", "state": "succeeded", "createdAt": 1.0, "assigned": 1, "examined": 2},
            )
        if request.method == "PATCH" and "/status/" in path:
            job_id, status = path.split("/")[-3], path.split("/")[-1]
            self.jobs[job_id]["status"] = status
            return httpx.Response(200, json=self.jobs[job_id])
        if request.method == "GET" and path.endswith("/jobs"):
            return httpx.Response(200, json=list(self.jobs.values()))
        if request.method == "GET" and "/jobs/" in path:
            job = self.jobs.get(path.rsplit("/", 1)[-1])
            if job is None:
                return httpx.Response(404, json={"detail": "not found"})
            return httpx.Response(200, json=job)
        return httpx.Response(500)


@pytest.fixture
def api() -> _FakeApi:
    return _FakeApi()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def client(api: _FakeApi, sleeps: List[float]) -> MatchClient:
    return MatchClient(BASE_URL, refresh_delay=0.5, transport=httpx.MockTransport(api), sleep=sleeps.append)


def test_request_match_only_acknowledges(client: MatchClient, api: _FakeApi, sleeps: List[float]) -> None:
    ack = client.request_match()
    assert ack.run_id == "run-1"
    assert ack.message == "Job matching process started"
    assert sleeps == []
    assert api.calls == ["POST /api/agents/match-jobs"]


def test_observe_waits_then_rereads_jobs(client: MatchClient, api: _FakeApi, sleeps: List[float]) -> None:
    ack, observations = client.request_and_observe(["job-1", "job-2"])

    assert ack.run_id == "run-1"
    assert sleeps == [0.5]
    assert [(obs.job_id, obs.matched) for obs in observations] == [("job-1", True), ("job-2", False)]
    assert observations[0].to_dict() == {"jobId": "job-1", "status": "PENDING", "agentId": "agent-7", "matched": True}


def test_observe_without_ids_reads_all_jobs(client: MatchClient, api: _FakeApi) -> None:
    observations = client.observe()
    assert {obs.job_id for obs in observations} == {"job-1", "job-2"}
    assert api.calls[-1] == "GET /api/jobs"


def test_run_status_and_set_status(client: MatchClient) -> None:
    summary = client.run_status("run-1")
    assert summary.state == "succeeded"
    assert summary.assigned == 1
    assert client.set_status("job-2", "RUNNING")["status"] == "RUNNING"


def test_http_errors_are_wrapped(client: MatchClient) -> None:
    with pytest.raises(MatchClientError) as excinfo:
        client.get_job("missing")
    assert "404" in str(excinfo.value)


def test_transport_errors_are_wrapped(sleeps: List[float]) -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = MatchClient(BASE_URL, transport=httpx.MockTransport(_refuse), sleep=sleeps.append)
    with pytest.raises(MatchClientError):
        client.request_match()


def test_default_delay_comes_from_settings(monkeypatch, api: _FakeApi, sleeps: List[float]) -> None:
    from orchestrator.config import reset_settings

    monkeypatch.setenv("MARKETPLACE_REFRESH_DELAY", "3")
    reset_settings()
    client = MatchClient(BASE_URL, transport=httpx.MockTransport(api), sleep=sleeps.append)
    client.observe(["job-1"])
    assert sleeps == [3.0]


def _patch_cli(monkeypatch, api: _FakeApi, sleeps: List[float]) -> None:
    def _factory(args):
        return MatchClient(
            args.api_url or BASE_URL,
            timeout=args.timeout,
            refresh_delay=args.delay,
            transport=httpx.MockTransport(api),
            sleep=sleeps.append,
        )

    monkeypatch.setattr(match_client, "_client", _factory)


def test_cli_match_watch(monkeypatch, capsys, api: _FakeApi, sleeps: List[float]) -> None:
    _patch_cli(monkeypatch, api, sleeps)

    match_client.main(["--delay", "0.25", "match", "job-1", "--watch"])

    output = json.loads(capsys.readouterr().out)
    assert output["ack"]["runId"] == "run-1"
    assert output["jobs"] == [{"jobId": "job-1", "status": "PENDING", "agentId": "agent-7", "matched": True}]
    assert sleeps == [0.25]


def test_cli_match_without_watch(monkeypatch, capsys, api: _FakeApi, sleeps: List[float]) -> None:
    _patch_cli(monkeypatch, api, sleeps)

    match_client.main(["match"])

    assert json.loads(capsys.readouterr().out) == {"message": "Job matching process started", "runId": "run-1"}
    assert sleeps == []


def test_cli_status_and_set_status(monkeypatch, capsys, api: _FakeApi, sleeps: List[float]) -> None:
    _patch_cli(monkeypatch, api, sleeps)

    match_client.main(["status", "run-1"])
    assert json.loads(capsys.readouterr().out)["state"] == "succeeded"

    match_client.main(["set-status", "job-1", "COMPLETED"])
    assert json.loads(capsys.readouterr().out)["status"] == "COMPLETED"


def test_cli_reports_failures(monkeypatch, api: _FakeApi, sleeps: List[float]) -> None:
    _patch_cli(monkeypatch, api, sleeps)
    with pytest.raises(SystemExit) as excinfo:
        match_client.main(["job", "missing"])
    assert "Job lookup failed" in str(excinfo.value)


def test_cli_rejects_unknown_status(monkeypatch, api: _FakeApi, sleeps: List[float]) -> None:
    _patch_cli(monkeypatch, api, sleeps)
    with pytest.raises(SystemExit):
        match_client.main(["set-status", "job-1", "DONE"])
