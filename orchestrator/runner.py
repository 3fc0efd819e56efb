"""Matching passes over eligible jobs and the asynchronous trigger around them."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Dict, Optional, Sequence, Tuple

from prometheus_client import Counter, Histogram

from backend.models.marketplace import AgentRecord, AgentRepository, JobRecord, JobRepository

from .matching import best_match
from .models import MatchAck, MatchAssignment, MatchCandidate, MatchRunSummary

_LOGGER = logging.getLogger(__name__)

_RUNS: Dict[str, MatchRunSummary] = {}
_THREADS: Dict[str, threading.Thread] = {}
_LOCK = threading.RLock()
_MAX_TRACKED_RUNS = 256

_PASS_LATENCY = Histogram("match_pass_latency_seconds", "Time spent on one matching pass.")
_PASSES = Counter("match_passes_total", "Matching passes by outcome.", ["outcome"])
_ASSIGNMENTS = Counter("match_assignments_total", "Jobs assigned to an agent by the matcher.")
_CONFLICTS = Counter(
    "match_assignment_conflicts_total",
    "Assignments discarded because the job was assigned by a concurrent writer.",
)
_JOB_FAILURES = Counter("match_job_failures_total", "Jobs skipped because matching raised.")

TRIGGER_MESSAGE = "Job matching process started"


class MatchRunError(RuntimeError):
    """Raised when a pass cannot read the job or agent registry."""


class MatchOrchestrator:
    """Apply the matching engine to every eligible job and commit assignments.

    Each job is handled independently: a failure while scoring or writing one
    job is logged and the pass moves on, leaving that job eligible for the
    next pass. Assignment goes through :meth:`JobRepository.assign_agent`,
    so overlapping passes never overwrite each other.
    """

    def __init__(self, jobs: JobRepository | None = None, agents: AgentRepository | None = None) -> None:
        self._jobs = jobs or JobRepository()
        self._agents = agents or AgentRepository()

    def _snapshot(self) -> Tuple[Sequence[JobRecord], Sequence[AgentRecord]]:
        try:
            return self._jobs.list_eligible(), self._agents.snapshot()
        except Exception as exc:
            raise MatchRunError(f"Failed to read registries: {exc}") from exc

    def _match_job(self, job: JobRecord, agents: Sequence[AgentRecord]) -> Tuple[str, Optional[MatchCandidate]]:
        candidate = best_match(job, agents)
        if candidate is None:
            return "unmatched", None
        if self._jobs.assign_agent(job.id, candidate.agent_id):
            return "assigned", candidate
        return "conflict", candidate

    def run_pass(self, run_id: str | None = None) -> MatchRunSummary:
        """Run one pass synchronously and return its summary."""

        now = time.time()
        summary = MatchRunSummary(
            run_id=run_id or uuid.uuid4().hex,
            state="running",
            created_at=now,
            started_at=now,
        )
        jobs, agents = self._snapshot()
        _LOGGER.info(
            "match.pass.start",
            extra={"run_id": summary.run_id, "eligible": len(jobs), "agents": len(agents)},
        )
        for job in jobs:
            summary.examined += 1
            try:
                outcome, candidate = self._match_job(job, agents)
            except Exception:
                summary.failed += 1
                _JOB_FAILURES.inc()
                _LOGGER.warning("match.job.failed", extra={"run_id": summary.run_id, "job_id": job.id}, exc_info=True)
                continue
            if outcome == "unmatched":
                summary.unmatched += 1
                _LOGGER.debug("match.job.unmatched", extra={"run_id": summary.run_id, "job_id": job.id})
            elif outcome == "conflict":
                summary.conflicts += 1
                _CONFLICTS.inc()
                _LOGGER.info("match.job.conflict", extra={"run_id": summary.run_id, "job_id": job.id})
            else:
                assert candidate is not None
                summary.assigned += 1
                summary.assignments.append(
                    MatchAssignment(job_id=job.id, agent_id=candidate.agent_id, score=candidate.score)
                )
                _ASSIGNMENTS.inc()
                _LOGGER.info(
                    "match.job.assigned",
                    extra={
                        "run_id": summary.run_id,
                        "job_id": job.id,
                        "agent_id": candidate.agent_id,
                        "score": candidate.score,
                    },
                )
        summary.state = "succeeded"
        summary.completed_at = time.time()
        _LOGGER.info(
            "match.pass.done",
            extra={
                "run_id": summary.run_id,
                "assigned": summary.assigned,
                "unmatched": summary.unmatched,
                "conflicts": summary.conflicts,
                "failed": summary.failed,
            },
        )
        return summary


def _prune() -> None:
    finished = [run_id for run_id, run in _RUNS.items() if run.state in {"succeeded", "failed"}]
    while len(_RUNS) > _MAX_TRACKED_RUNS and finished:
        _RUNS.pop(finished.pop(0), None)


def _execute(run_id: str, orchestrator: MatchOrchestrator) -> None:
    with _LOCK:
        current = _RUNS[run_id]
        current.state = "running"
        current.started_at = time.time()
    try:
        with _PASS_LATENCY.time():
            result = orchestrator.run_pass(run_id=run_id)
        result.created_at = current.created_at
        _PASSES.labels(outcome="succeeded").inc()
    except MatchRunError as exc:
        _LOGGER.error("match.pass.failed", extra={"run_id": run_id, "error": str(exc)})
        result = current.model_copy(update={"state": "failed", "completed_at": time.time(), "error": str(exc)})
        _PASSES.labels(outcome="failed").inc()
    except Exception as exc:
        _LOGGER.exception("match.pass.crashed", extra={"run_id": run_id})
        result = current.model_copy(
            update={"state": "failed", "completed_at": time.time(), "error": f"{type(exc).__name__}: {exc}"}
        )
        _PASSES.labels(outcome="failed").inc()
    with _LOCK:
        _RUNS[run_id] = result
        _THREADS.pop(run_id, None)
        _prune()


def request_match(orchestrator: MatchOrchestrator | None = None) -> MatchAck:
    """Start a pass on a background thread and acknowledge immediately.

    The returned token can be passed to :func:`get_run`; the pass itself is
    only observable through the job records or that status lookup.
    """

    orchestrator = orchestrator or MatchOrchestrator()
    run_id = uuid.uuid4().hex
    thread = threading.Thread(target=_execute, args=(run_id, orchestrator), daemon=True, name=f"match-run-{run_id}")
    with _LOCK:
        _RUNS[run_id] = MatchRunSummary(run_id=run_id, state="pending", created_at=time.time())
        _THREADS[run_id] = thread
    thread.start()
    _LOGGER.info("match.triggered", extra={"run_id": run_id})
    return MatchAck(message=TRIGGER_MESSAGE, run_id=run_id)


def get_run(run_id: str) -> MatchRunSummary:
    with _LOCK:
        run = _RUNS.get(run_id)
        if run is None:
            raise KeyError(run_id)
        return run.model_copy(deep=True)


def wait_for_run(run_id: str, timeout: float | None = None) -> MatchRunSummary:
    """Block until the pass behind ``run_id`` finishes (or ``timeout`` expires)."""

    with _LOCK:
        thread = _THREADS.get(run_id)
    if thread is not None:
        thread.join(timeout)
    return get_run(run_id)


def reset_runs() -> None:
    with _LOCK:
        threads = list(_THREADS.values())
    for thread in threads:
        thread.join()
    with _LOCK:
        _RUNS.clear()
        _THREADS.clear()


__all__ = [
    "TRIGGER_MESSAGE",
    "MatchOrchestrator",
    "MatchRunError",
    "get_run",
    "request_match",
    "reset_runs",
    "wait_for_run",
]
