"""Mapping of registry failures onto HTTP errors."""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException

from backend.models.marketplace import (
    AgentNotFoundError,
    AssignmentConflictError,
    JobNotFoundError,
    JobValidationError,
    MarketplaceError,
)
from orchestrator.lifecycle import JobTransitionError


def handle_error(exc: MarketplaceError) -> NoReturn:
    if isinstance(exc, (AgentNotFoundError, JobNotFoundError)):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, (AssignmentConflictError, JobTransitionError)):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, JobValidationError):
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


__all__ = ["handle_error"]
