"""FastAPI router exposing the job registry and status updates.

Every job payload carries the assigned agent record under ``agent`` next to
``agentId``; ``agent`` is ``None`` for unassigned jobs and for jobs whose
agent has since been deleted.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, Query

from backend.models.marketplace import (
    AgentNotFoundError,
    AgentRepository,
    JobPriority,
    JobRecord,
    JobRepository,
    JobStatus,
    MarketplaceError,
    SkillLevel,
)
from orchestrator.lifecycle import update_status
from orchestrator.models import JobCreateIn, JobStatusIn, JobUpdateIn

from .errors import handle_error

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _jobs() -> JobRepository:
    return JobRepository()


def _agents() -> AgentRepository:
    return AgentRepository()


def _require_agent(agents: AgentRepository, agent_id: str) -> None:
    if not agents.exists(agent_id):
        raise AgentNotFoundError(f"Agent `{agent_id}` is not registered")


def _present(records: Sequence[JobRecord], agents: AgentRepository) -> List[Dict[str, Any]]:
    resolved = agents.find_many(job.agent_id for job in records if job.agent_id)
    payloads = []
    for job in records:
        agent = resolved.get(job.agent_id) if job.agent_id else None
        payloads.append({**job.to_dict(), "agent": agent.to_dict() if agent else None})
    return payloads


def _present_one(job: JobRecord, agents: AgentRepository) -> Dict[str, Any]:
    return _present([job], agents)[0]


@router.post("", status_code=201)
def create_job(
    payload: JobCreateIn,
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> Dict[str, Any]:
    try:
        if payload.agent_id:
            _require_agent(agents, payload.agent_id)
        job = jobs.create(payload.model_dump())
        return _present_one(job, agents)
    except MarketplaceError as exc:
        handle_error(exc)


@router.get("")
def list_jobs(
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> List[Dict[str, Any]]:
    return _present(jobs.list(), agents)


@router.get("/paginated")
def list_jobs_paginated(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    status: Optional[JobStatus] = Query(default=None),
    category: Optional[str] = Query(default=None),
    priority: Optional[JobPriority] = Query(default=None),
    skill_level: Optional[SkillLevel] = Query(default=None, alias="skillLevel"),
    search: Optional[str] = Query(default=None),
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> Dict[str, Any]:
    result = jobs.paginate(
        page,
        page_size,
        status=status,
        category=category,
        priority=priority,
        skill_level=skill_level,
        search=search,
    )
    return {**result.to_dict(), "data": _present(result.data, agents)}


@router.get("/{job_id}")
def get_job(
    job_id: str,
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> Dict[str, Any]:
    try:
        return _present_one(jobs.get(job_id), agents)
    except MarketplaceError as exc:
        handle_error(exc)


@router.patch("/{job_id}")
def update_job(
    job_id: str,
    payload: JobUpdateIn,
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> Dict[str, Any]:
    """Update fields and optionally assign an agent; both land or neither does."""

    try:
        if payload.agent_id:
            _require_agent(agents, payload.agent_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True, exclude={"agent_id"})
        job = jobs.update(job_id, changes, agent_id=payload.agent_id)
        return _present_one(job, agents)
    except MarketplaceError as exc:
        handle_error(exc)


@router.delete("/{job_id}")
def delete_job(
    job_id: str,
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> Dict[str, Any]:
    try:
        return _present_one(jobs.delete(job_id), agents)
    except MarketplaceError as exc:
        handle_error(exc)


@router.patch("/{job_id}/status/{status}")
def set_job_status(
    job_id: str,
    status: JobStatus,
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> Dict[str, Any]:
    try:
        return _present_one(update_status(jobs, job_id, status), agents)
    except MarketplaceError as exc:
        handle_error(exc)


@router.patch("/{job_id}/status")
def set_job_status_body(
    job_id: str,
    payload: JobStatusIn,
    jobs: JobRepository = Depends(_jobs),
    agents: AgentRepository = Depends(_agents),
) -> Dict[str, Any]:
    try:
        return _present_one(update_status(jobs, job_id, payload.status), agents)
    except MarketplaceError as exc:
        handle_error(exc)


__all__ = [
    "router",
    "create_job",
    "delete_job",
    "get_job",
    "list_jobs",
    "list_jobs_paginated",
    "set_job_status",
    "set_job_status_body",
    "update_job",
]
