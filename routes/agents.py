"""FastAPI router exposing the agent registry and the job-matching trigger."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from backend.models.marketplace import AgentRepository, MarketplaceError
from orchestrator.models import AgentCreateIn, AgentUpdateIn, MatchAck, MatchRunSummary
from orchestrator.runner import get_run, request_match

from .errors import handle_error


router = APIRouter(prefix="/agents", tags=["agents"])


def _repository() -> AgentRepository:
    return AgentRepository()


@router.post("/match-jobs", response_model=MatchAck, status_code=202)
def match_jobs() -> MatchAck:
    """Start one matching pass; results are observed by re-reading jobs."""

    return request_match()


@router.get("/match-jobs/{run_id}", response_model=MatchRunSummary)
def match_run_status(run_id: str) -> MatchRunSummary:
    try:
        return get_run(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="MATCH_RUN_NOT_FOUND") from exc


@router.post("", status_code=201)
def create_agent(payload: AgentCreateIn, repo: AgentRepository = Depends(_repository)) -> Dict[str, Any]:
    return repo.create(payload.model_dump()).to_dict()


@router.get("")
def list_agents(repo: AgentRepository = Depends(_repository)) -> List[Dict[str, Any]]:
    return [agent.to_dict() for agent in repo.list()]


@router.get("/{agent_id}")
def get_agent(agent_id: str, repo: AgentRepository = Depends(_repository)) -> Dict[str, Any]:
    try:
        return repo.get(agent_id).to_dict()
    except MarketplaceError as exc:
        handle_error(exc)


@router.patch("/{agent_id}")
def update_agent(agent_id: str, payload: AgentUpdateIn, repo: AgentRepository = Depends(_repository)) -> Dict[str, Any]:
    try:
        return repo.update(agent_id, payload.model_dump(exclude_unset=True, exclude_none=True)).to_dict()
    except MarketplaceError as exc:
        handle_error(exc)


@router.delete("/{agent_id}")
def delete_agent(agent_id: str, repo: AgentRepository = Depends(_repository)) -> Dict[str, Any]:
    try:
        return repo.delete(agent_id).to_dict()
    except MarketplaceError as exc:
        handle_error(exc)


__all__ = [
    "router",
    "create_agent",
    "delete_agent",
    "get_agent",
    "list_agents",
    "match_jobs",
    "match_run_status",
    "update_agent",
]
