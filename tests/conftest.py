"""Pytest fixtures configuring an isolated marketplace database."""

from __future__ import annotations

from typing import Any, Callable, Iterator

import pytest

from backend.database import Database, set_database
from backend.migrations import MIGRATIONS
from backend.models.marketplace import AgentRecord, AgentRepository, JobRecord, JobRepository
from orchestrator.config import reset_settings
from orchestrator.runner import reset_runs


@pytest.fixture(autouse=True)
def isolated_marketplace_database(monkeypatch) -> Iterator[Database]:
    monkeypatch.setenv("MARKETPLACE_DATABASE_URL", "sqlite:///:memory:")
    for key in ("MARKETPLACE_LIFECYCLE_STRICT", "MARKETPLACE_REFRESH_DELAY", "MARKETPLACE_API_URL"):
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    database = Database("sqlite:///:memory:")
    database.run_migrations(MIGRATIONS)
    set_database(database)
    try:
        yield database
    finally:
        reset_runs()
        database.close()
        set_database(None)
        reset_settings()


@pytest.fixture
def agents(isolated_marketplace_database: Database) -> AgentRepository:
    return AgentRepository(isolated_marketplace_database)


@pytest.fixture
def jobs(isolated_marketplace_database: Database) -> JobRepository:
    return JobRepository(isolated_marketplace_database)


@pytest.fixture
def make_agent(agents: AgentRepository) -> Callable[..., AgentRecord]:
    def _make(**overrides: Any) -> AgentRecord:
        payload = {
            "name": "Agent",
            "classification": "Data Processor",
            "tags": [],
            "auto_accept_jobs": False,
            "is_free": False,
            "address": "0x0000000000000000000000000000000000000001",
        }
        payload.update(overrides)
        return agents.create(payload)

    return _make


@pytest.fixture
def make_job(jobs: JobRepository) -> Callable[..., JobRecord]:
    def _make(**overrides: Any) -> JobRecord:
        payload = {
            "title": "Label invoices",
            "category": "Data Processor",
            "tags": [],
            "budget_min": 100,
            "budget_max": 1000,
            "deadline": "2026-12-31",
            "auto_assign": True,
        }
        payload.update(overrides)
        return jobs.create(payload)

    return _make
