"""Job lifecycle transitions.

Status and assignment are independent: matching only ever writes ``agent_id``
and the status moves only through :func:`update_status`. Updates are
permissive by default (any status may be written at any time); strict mode
enforces :data:`TRANSITIONS`.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet

from backend.models.marketplace import JobRecord, JobRepository, JobStatus, MarketplaceError

from .config import get_settings

LOGGER = logging.getLogger(__name__)

INITIAL_STATUS = JobStatus.PENDING

TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class JobTransitionError(MarketplaceError):
    """Raised in strict mode when a status change is not in the transition table."""


def is_terminal(status: JobStatus | str) -> bool:
    return not TRANSITIONS[JobStatus(status)]


def is_allowed(current: JobStatus | str, target: JobStatus | str) -> bool:
    current, target = JobStatus(current), JobStatus(target)
    return current == target or target in TRANSITIONS[current]


def update_status(
    repository: JobRepository,
    job_id: str,
    status: JobStatus | str,
    *,
    strict: bool | None = None,
) -> JobRecord:
    """Set the status of ``job_id`` and return the updated record."""

    target = JobStatus(status)
    if strict is None:
        strict = get_settings().lifecycle_strict
    if not strict:
        updated = repository.set_status(job_id, target)
        LOGGER.info("job.status", extra={"job_id": job_id, "status": target.value})
        return updated  # type: ignore[return-value]

    current = repository.get(job_id).status
    if not is_allowed(current, target):
        raise JobTransitionError(f"Job `{job_id}` cannot move from {current.value} to {target.value}")
    updated = repository.set_status(job_id, target, expected=current)
    if updated is None:
        raise JobTransitionError(f"Job `{job_id}` changed status concurrently; expected {current.value}")
    LOGGER.info(
        "job.status",
        extra={"job_id": job_id, "status": target.value, "previous": current.value, "strict": True},
    )
    return updated


__all__ = [
    "INITIAL_STATUS",
    "TRANSITIONS",
    "JobTransitionError",
    "is_allowed",
    "is_terminal",
    "update_status",
]
