"""Persistence models for the agent and job registries."""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from backend.database import Database, get_database

LOGGER = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Closed set of lifecycle states a job can be in."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentType(str, Enum):
    FIXED = "Fixed"
    HOURLY = "Hourly"
    MILESTONE = "Milestone"


class JobPriority(str, Enum):
    LOW = "Low Priority"
    MEDIUM = "Medium Priority"
    HIGH = "High Priority"
    URGENT = "Urgent"


class SkillLevel(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"


class MarketplaceError(RuntimeError):
    """Base class for registry interaction failures."""


class AgentNotFoundError(MarketplaceError):
    """Raised when an agent identifier cannot be resolved."""


class JobNotFoundError(MarketplaceError):
    """Raised when a job identifier cannot be resolved."""


class JobValidationError(MarketplaceError):
    """Raised when a job payload violates a registry invariant."""


class AssignmentConflictError(MarketplaceError):
    """Raised when a manual assignment targets a job that already has an agent."""


def _now() -> float:
    return time.time()


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _encode_tags(tags: Any) -> str:
    return json.dumps([str(tag) for tag in (tags or [])], ensure_ascii=False)


def _decode_tags(payload: Any) -> Optional[List[str]]:
    if payload in (None, "", b""):
        return []
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    try:
        decoded = json.loads(payload)
    except ValueError:
        LOGGER.warning("Failed to decode tags payload", exc_info=True)
        return None
    if not isinstance(decoded, list):
        return None
    return [str(tag) for tag in decoded]


def _encode_result(result: Any) -> Optional[str]:
    if result is None:
        return None
    return json.dumps(result, ensure_ascii=False, sort_keys=True)


def _decode_result(payload: Any) -> Any:
    if payload in (None, "", b""):
        return None
    try:
        return json.loads(payload)
    except ValueError:  # pragma: no cover - defensive against corrupted rows
        LOGGER.warning("Failed to decode job result payload", exc_info=True)
        return None


def _encode_enum(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _encode_date(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


@dataclass(slots=True)
class AgentRecord:
    id: str
    name: str
    classification: str
    tags: Optional[List[str]]
    auto_accept_jobs: bool
    is_free: bool
    address: str
    description: Optional[str]
    author_bio: Optional[str]
    created_at: float
    updated_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "classification": self.classification,
            "tags": list(self.tags or []),
            "autoAcceptJobs": self.auto_accept_jobs,
            "isFree": self.is_free,
            "address": self.address,
            "description": self.description,
            "authorBio": self.author_bio,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(slots=True)
class JobRecord:
    id: str
    title: str
    category: str
    tags: List[str]
    description: Optional[str]
    payment_type: PaymentType
    budget_min: float
    budget_max: float
    deadline: date
    priority: JobPriority
    skill_level: SkillLevel
    deliverables: Optional[str]
    auto_assign: bool
    allow_bidding: bool
    enable_escrow: bool
    agent_id: Optional[str]
    status: JobStatus
    result: Any
    created_at: float
    updated_at: float

    @property
    def is_matched(self) -> bool:
        return self.agent_id is not None

    @property
    def is_eligible(self) -> bool:
        """Whether the automatic matcher may consider this job."""

        return self.status is JobStatus.PENDING and self.agent_id is None and self.auto_assign

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "tags": list(self.tags),
            "description": self.description,
            "paymentType": self.payment_type.value,
            "budgetMin": self.budget_min,
            "budgetMax": self.budget_max,
            "deadline": self.deadline.isoformat(),
            "priority": self.priority.value,
            "skillLevel": self.skill_level.value,
            "deliverables": self.deliverables,
            "autoAssign": self.auto_assign,
            "allowBidding": self.allow_bidding,
            "enableEscrow": self.enable_escrow,
            "agentId": self.agent_id,
            "status": self.status.value,
            "result": self.result,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(slots=True)
class JobPage:
    data: List[JobRecord] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 10

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return math.ceil(self.total / self.page_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [job.to_dict() for job in self.data],
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }


_AGENT_COLUMNS = "id, name, classification, tags, auto_accept_jobs, is_free, address, description, author_bio, created_at, updated_at"

# field name -> (column, encoder)
_AGENT_UPDATABLE = {
    "name": ("name", str),
    "classification": ("classification", str),
    "tags": ("tags", _encode_tags),
    "auto_accept_jobs": ("auto_accept_jobs", lambda value: 1 if value else 0),
    "is_free": ("is_free", lambda value: 1 if value else 0),
    "address": ("address", str),
    "description": ("description", lambda value: value),
    "author_bio": ("author_bio", lambda value: value),
}


class AgentRepository:
    """Repository coordinating persistence for agent records."""

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or get_database()

    def create(self, payload: Mapping[str, Any]) -> AgentRecord:
        agent_id = uuid.uuid4().hex
        now = _now()
        with self._db.transaction() as cur:
            cur.execute(
                f"""
                INSERT INTO marketplace_agents ({_AGENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    agent_id,
                    payload["name"],
                    payload["classification"],
                    _encode_tags(payload.get("tags")),
                    1 if payload.get("auto_accept_jobs") else 0,
                    1 if payload.get("is_free") else 0,
                    payload["address"],
                    payload.get("description"),
                    payload.get("author_bio"),
                    now,
                    now,
                ),
            )
            cur.execute(f"SELECT {_AGENT_COLUMNS} FROM marketplace_agents WHERE id = ?", (agent_id,))
            row = cur.fetchone()
        LOGGER.info("agent.created", extra={"agent_id": agent_id})
        return self._row_to_agent(row)

    def get(self, agent_id: str) -> AgentRecord:
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_AGENT_COLUMNS} FROM marketplace_agents WHERE id = ?", (agent_id,))
            row = cur.fetchone()
        if row is None:
            raise AgentNotFoundError(f"Agent `{agent_id}` is not registered")
        return self._row_to_agent(row)

    def exists(self, agent_id: str) -> bool:
        with self._db.transaction() as cur:
            cur.execute("SELECT 1 FROM marketplace_agents WHERE id = ?", (agent_id,))
            return cur.fetchone() is not None

    def find_many(self, agent_ids: Iterable[str]) -> Dict[str, AgentRecord]:
        """Resolve ``agent_ids`` to records; unknown ids are simply absent."""

        wanted = sorted({agent_id for agent_id in agent_ids if agent_id})
        if not wanted:
            return {}
        marks = ", ".join("?" for _ in wanted)
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_AGENT_COLUMNS} FROM marketplace_agents WHERE id IN ({marks})", tuple(wanted))
            rows = cur.fetchall()
        return {record.id: record for record in map(self._row_to_agent, rows)}

    def list(self) -> List[AgentRecord]:
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_AGENT_COLUMNS} FROM marketplace_agents ORDER BY created_at ASC, id ASC")
            rows = cur.fetchall()
        return [self._row_to_agent(row) for row in rows or []]

    def snapshot(self) -> Tuple[AgentRecord, ...]:
        """Return an immutable point-in-time view of every registered agent."""

        return tuple(self.list())

    def update(self, agent_id: str, changes: Mapping[str, Any]) -> AgentRecord:
        updates: List[str] = []
        params: List[Any] = []
        for name, value in changes.items():
            target = _AGENT_UPDATABLE.get(name)
            if target is None:
                continue
            column, encoder = target
            updates.append(f"{column} = ?")
            params.append(encoder(value))
        with self._db.transaction() as cur:
            cur.execute("SELECT 1 FROM marketplace_agents WHERE id = ?", (agent_id,))
            if cur.fetchone() is None:
                raise AgentNotFoundError(f"Agent `{agent_id}` is not registered")
            if updates:
                updates.append("updated_at = ?")
                params.extend([_now(), agent_id])
                cur.execute(
                    f"UPDATE marketplace_agents SET {', '.join(updates)} WHERE id = ?",
                    tuple(params),
                )
            cur.execute(f"SELECT {_AGENT_COLUMNS} FROM marketplace_agents WHERE id = ?", (agent_id,))
            row = cur.fetchone()
        return self._row_to_agent(row)

    def delete(self, agent_id: str) -> AgentRecord:
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_AGENT_COLUMNS} FROM marketplace_agents WHERE id = ?", (agent_id,))
            row = cur.fetchone()
            if row is None:
                raise AgentNotFoundError(f"Agent `{agent_id}` is not registered")
            cur.execute("DELETE FROM marketplace_agents WHERE id = ?", (agent_id,))
        LOGGER.info("agent.deleted", extra={"agent_id": agent_id})
        return self._row_to_agent(row)

    def _row_to_agent(self, row) -> AgentRecord:
        return AgentRecord(
            id=row[0],
            name=row[1],
            classification=row[2],
            tags=_decode_tags(row[3]),
            auto_accept_jobs=bool(row[4]),
            is_free=bool(row[5]),
            address=row[6],
            description=row[7],
            author_bio=row[8],
            created_at=float(row[9]),
            updated_at=float(row[10]),
        )


_JOB_COLUMNS = (
    "id, title, category, tags, description, payment_type, budget_min, budget_max, deadline, priority, "
    "skill_level, deliverables, auto_assign, allow_bidding, enable_escrow, agent_id, status, result, "
    "created_at, updated_at"
)

_JOB_UPDATABLE = {
    "title": ("title", str),
    "category": ("category", str),
    "tags": ("tags", _encode_tags),
    "description": ("description", lambda value: value),
    "payment_type": ("payment_type", _encode_enum),
    "budget_min": ("budget_min", float),
    "budget_max": ("budget_max", float),
    "deadline": ("deadline", _encode_date),
    "priority": ("priority", _encode_enum),
    "skill_level": ("skill_level", _encode_enum),
    "deliverables": ("deliverables", lambda value: value),
    "auto_assign": ("auto_assign", lambda value: 1 if value else 0),
    "allow_bidding": ("allow_bidding", lambda value: 1 if value else 0),
    "enable_escrow": ("enable_escrow", lambda value: 1 if value else 0),
    "result": ("result", _encode_result),
}


def _check_budget(budget_min: float, budget_max: float) -> None:
    if budget_min > budget_max:
        raise JobValidationError(f"budgetMin ({budget_min}) must not exceed budgetMax ({budget_max})")


class JobRepository:
    """Repository coordinating persistence for job records.

    Every write to ``agent_id`` (``assign_agent``, ``update`` with an agent, or
    ``create`` with one) is conditioned on the job still being unassigned, so
    concurrent writers never overwrite each other.
    """

    def __init__(self, database: Database | None = None) -> None:
        self._db = database or get_database()

    # ------------------------------------------------------------------
    # CRUD
    def create(self, payload: Mapping[str, Any]) -> JobRecord:
        budget_min = float(payload["budget_min"])
        budget_max = float(payload["budget_max"])
        _check_budget(budget_min, budget_max)
        job_id = uuid.uuid4().hex
        now = _now()
        with self._db.transaction() as cur:
            cur.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM marketplace_jobs")
            seq = int(cur.fetchone()[0])
            cur.execute(
                f"""
                INSERT INTO marketplace_jobs (seq, {_JOB_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    seq,
                    job_id,
                    payload["title"],
                    payload["category"],
                    _encode_tags(payload.get("tags")),
                    payload.get("description"),
                    _encode_enum(payload.get("payment_type", PaymentType.FIXED)),
                    budget_min,
                    budget_max,
                    _encode_date(payload["deadline"]),
                    _encode_enum(payload.get("priority", JobPriority.MEDIUM)),
                    _encode_enum(payload.get("skill_level", SkillLevel.INTERMEDIATE)),
                    payload.get("deliverables"),
                    1 if payload.get("auto_assign") else 0,
                    1 if payload.get("allow_bidding") else 0,
                    1 if payload.get("enable_escrow") else 0,
                    payload.get("agent_id") or None,
                    JobStatus.PENDING.value,
                    _encode_result(payload.get("result")),
                    now,
                    now,
                ),
            )
            cur.execute(f"SELECT {_JOB_COLUMNS} FROM marketplace_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
        LOGGER.info("job.created", extra={"job_id": job_id, "auto_assign": bool(payload.get("auto_assign"))})
        return self._row_to_job(row)

    def get(self, job_id: str) -> JobRecord:
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_JOB_COLUMNS} FROM marketplace_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
        if row is None:
            raise JobNotFoundError(f"Job `{job_id}` does not exist")
        return self._row_to_job(row)

    def list(self) -> List[JobRecord]:
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_JOB_COLUMNS} FROM marketplace_jobs ORDER BY seq ASC")
            rows = cur.fetchall()
        return [self._row_to_job(row) for row in rows or []]

    def paginate(
        self,
        page: int = 1,
        page_size: int = 10,
        *,
        status: JobStatus | str | None = None,
        category: str | None = None,
        priority: JobPriority | str | None = None,
        skill_level: SkillLevel | str | None = None,
        search: str | None = None,
    ) -> JobPage:
        page = max(1, int(page))
        page_size = max(1, int(page_size))
        clauses: List[str] = []
        params: List[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(_encode_enum(status))
        if category:
            clauses.append("category = ?")
            params.append(category)
        if priority:
            clauses.append("priority = ?")
            params.append(_encode_enum(priority))
        if skill_level:
            clauses.append("skill_level = ?")
            params.append(_encode_enum(skill_level))
        if search:
            clauses.append("(title LIKE ? OR description LIKE ?)")
            pattern = f"%{search}%"
            params.extend([pattern, pattern])
        where_clause = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._db.transaction() as cur:
            cur.execute(f"SELECT COUNT(*) FROM marketplace_jobs {where_clause}", tuple(params))
            total = int(cur.fetchone()[0])
            cur.execute(
                f"SELECT {_JOB_COLUMNS} FROM marketplace_jobs {where_clause} ORDER BY seq DESC LIMIT ? OFFSET ?",
                tuple(params) + (page_size, (page - 1) * page_size),
            )
            rows = cur.fetchall()
        return JobPage(
            data=[self._row_to_job(row) for row in rows or []],
            total=total,
            page=page,
            page_size=page_size,
        )

    def update(self, job_id: str, changes: Mapping[str, Any], *, agent_id: str | None = None) -> JobRecord:
        """Apply field ``changes`` and, with ``agent_id``, assign the job in the same transaction.

        Assignment is refused with :class:`AssignmentConflictError` before anything
        is written when the job already carries a different agent.
        """

        updates: List[str] = []
        params: List[Any] = []
        for name, value in changes.items():
            target = _JOB_UPDATABLE.get(name)
            if target is None:
                continue
            column, encoder = target
            updates.append(f"{column} = ?")
            params.append(encoder(value))
        with self._db.transaction() as cur:
            cur.execute("SELECT budget_min, budget_max, agent_id FROM marketplace_jobs WHERE id = ?", (job_id,))
            current = cur.fetchone()
            if current is None:
                raise JobNotFoundError(f"Job `{job_id}` does not exist")
            if agent_id and current[2] is not None and current[2] != agent_id:
                raise AssignmentConflictError(f"Job `{job_id}` is already assigned to `{current[2]}`")
            budget_min = float(changes.get("budget_min", current[0]))
            budget_max = float(changes.get("budget_max", current[1]))
            _check_budget(budget_min, budget_max)
            if updates:
                updates.append("updated_at = ?")
                params.extend([_now(), job_id])
                cur.execute(
                    f"UPDATE marketplace_jobs SET {', '.join(updates)} WHERE id = ?",
                    tuple(params),
                )
            if agent_id and current[2] is None:
                cur.execute(
                    "UPDATE marketplace_jobs SET agent_id = ?, updated_at = ? WHERE id = ? AND agent_id IS NULL",
                    (agent_id, _now(), job_id),
                )
                LOGGER.info("job.assigned.manual", extra={"job_id": job_id, "agent_id": agent_id})
            cur.execute(f"SELECT {_JOB_COLUMNS} FROM marketplace_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
        return self._row_to_job(row)

    def delete(self, job_id: str) -> JobRecord:
        with self._db.transaction() as cur:
            cur.execute(f"SELECT {_JOB_COLUMNS} FROM marketplace_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
            if row is None:
                raise JobNotFoundError(f"Job `{job_id}` does not exist")
            cur.execute("DELETE FROM marketplace_jobs WHERE id = ?", (job_id,))
        LOGGER.info("job.deleted", extra={"job_id": job_id})
        return self._row_to_job(row)

    # ------------------------------------------------------------------
    # Lifecycle and assignment
    def set_status(self, job_id: str, status: JobStatus, *, expected: JobStatus | None = None) -> Optional[JobRecord]:
        """Overwrite the job status.

        With ``expected`` the write only happens while the stored status still
        equals it; ``None`` is returned when it does not.
        """

        with self._db.transaction() as cur:
            if expected is None:
                cur.execute(
                    "UPDATE marketplace_jobs SET status = ?, updated_at = ? WHERE id = ?",
                    (JobStatus(status).value, _now(), job_id),
                )
            else:
                cur.execute(
                    "UPDATE marketplace_jobs SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                    (JobStatus(status).value, _now(), job_id, JobStatus(expected).value),
                )
            if cur.rowcount != 1:
                cur.execute("SELECT 1 FROM marketplace_jobs WHERE id = ?", (job_id,))
                if cur.fetchone() is None:
                    raise JobNotFoundError(f"Job `{job_id}` does not exist")
                return None
            cur.execute(f"SELECT {_JOB_COLUMNS} FROM marketplace_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
        return self._row_to_job(row)

    def list_eligible(self) -> List[JobRecord]:
        """Pending, unassigned, auto-assign jobs in creation order."""

        with self._db.transaction() as cur:
            cur.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM marketplace_jobs
                 WHERE status = ? AND auto_assign = 1 AND agent_id IS NULL
              ORDER BY seq ASC
                """,
                (JobStatus.PENDING.value,),
            )
            rows = cur.fetchall()
        return [self._row_to_job(row) for row in rows or []]

    def assign_agent(self, job_id: str, agent_id: str) -> bool:
        """Compare-and-set ``agent_id`` on an unassigned job.

        Returns ``False`` when the job already carries an agent (or vanished);
        the caller must discard its result in that case.
        """

        with self._db.transaction() as cur:
            cur.execute(
                "UPDATE marketplace_jobs SET agent_id = ?, updated_at = ? WHERE id = ? AND agent_id IS NULL",
                (agent_id, _now(), job_id),
            )
            return cur.rowcount == 1

    # ------------------------------------------------------------------
    # Row adapters
    def _row_to_job(self, row) -> JobRecord:
        return JobRecord(
            id=row[0],
            title=row[1],
            category=row[2],
            tags=_decode_tags(row[3]) or [],
            description=row[4],
            payment_type=PaymentType(row[5]),
            budget_min=float(row[6]),
            budget_max=float(row[7]),
            deadline=date.fromisoformat(row[8]),
            priority=JobPriority(row[9]),
            skill_level=SkillLevel(row[10]),
            deliverables=row[11],
            auto_assign=bool(row[12]),
            allow_bidding=bool(row[13]),
            enable_escrow=bool(row[14]),
            agent_id=row[15],
            status=JobStatus(row[16]),
            result=_decode_result(row[17]),
            created_at=float(row[18]),
            updated_at=float(row[19]),
        )


__all__ = [
    "AgentNotFoundError",
    "AgentRecord",
    "AgentRepository",
    "AssignmentConflictError",
    "JobNotFoundError",
    "JobPage",
    "JobPriority",
    "JobRecord",
    "JobRepository",
    "JobStatus",
    "JobValidationError",
    "MarketplaceError",
    "PaymentType",
    "SkillLevel",
]
