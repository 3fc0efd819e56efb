"""Shared Pydantic models for the marketplace API and matching service."""

from __future__ import annotations

import datetime as dt
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from backend.models.marketplace import JobPriority, JobStatus, PaymentType, SkillLevel


def _clean_tags(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    cleaned: List[str] = []
    for value in values:
        text = str(value).strip()
        if text:
            cleaned.append(text)
    return cleaned


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AgentCreateIn(_WireModel):
    """Payload used when registering a new agent."""

    name: str = Field(..., min_length=1)
    classification: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    auto_accept_jobs: bool = Field(default=False, alias="autoAcceptJobs")
    is_free: bool = Field(default=False, alias="isFree")
    address: str = Field(..., min_length=1, description="Wallet address; stored opaquely.")
    description: Optional[str] = None
    author_bio: Optional[str] = Field(default=None, alias="authorBio")

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, values):
        return _clean_tags(values)


class AgentUpdateIn(_WireModel):
    """Partial update payload for an existing agent."""

    name: Optional[str] = Field(default=None, min_length=1)
    classification: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[List[str]] = None
    auto_accept_jobs: Optional[bool] = Field(default=None, alias="autoAcceptJobs")
    is_free: Optional[bool] = Field(default=None, alias="isFree")
    address: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    author_bio: Optional[str] = Field(default=None, alias="authorBio")

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, values):
        return _clean_tags(values)


class JobCreateIn(_WireModel):
    """Payload used when publishing a job."""

    title: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    payment_type: PaymentType = Field(default=PaymentType.FIXED, alias="paymentType")
    budget_min: float = Field(..., ge=0, alias="budgetMin")
    budget_max: float = Field(..., ge=0, alias="budgetMax")
    deadline: dt.date
    priority: JobPriority = JobPriority.MEDIUM
    skill_level: SkillLevel = Field(default=SkillLevel.INTERMEDIATE, alias="skillLevel")
    deliverables: Optional[str] = None
    auto_assign: bool = Field(default=False, alias="autoAssign")
    allow_bidding: bool = Field(default=False, alias="allowBidding")
    enable_escrow: bool = Field(default=False, alias="enableEscrow")
    agent_id: Optional[str] = Field(default=None, alias="agentId")

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, values):
        return _clean_tags(values)

    @model_validator(mode="after")
    def _check_budget(self) -> "JobCreateIn":
        if self.budget_min > self.budget_max:
            raise ValueError("budgetMin must not exceed budgetMax")
        return self


class JobUpdateIn(_WireModel):
    """Partial update payload for an existing job."""

    title: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[List[str]] = None
    description: Optional[str] = None
    payment_type: Optional[PaymentType] = Field(default=None, alias="paymentType")
    budget_min: Optional[float] = Field(default=None, ge=0, alias="budgetMin")
    budget_max: Optional[float] = Field(default=None, ge=0, alias="budgetMax")
    deadline: Optional[dt.date] = None
    priority: Optional[JobPriority] = None
    skill_level: Optional[SkillLevel] = Field(default=None, alias="skillLevel")
    deliverables: Optional[str] = None
    auto_assign: Optional[bool] = Field(default=None, alias="autoAssign")
    allow_bidding: Optional[bool] = Field(default=None, alias="allowBidding")
    enable_escrow: Optional[bool] = Field(default=None, alias="enableEscrow")
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    result: Optional[Any] = None

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, values):
        return _clean_tags(values)

    @model_validator(mode="after")
    def _check_budget(self) -> "JobUpdateIn":
        if self.budget_min is not None and self.budget_max is not None and self.budget_min > self.budget_max:
            raise ValueError("budgetMin must not exceed budgetMax")
        return self


class JobStatusIn(_WireModel):
    status: JobStatus


class MatchCandidate(_WireModel):
    """One ranked entry of a match attempt."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    agent_id: str = Field(..., alias="agentId")
    score: int = Field(..., gt=0)


class MatchAssignment(_WireModel):
    job_id: str = Field(..., alias="jobId")
    agent_id: str = Field(..., alias="agentId")
    score: int


class MatchRunSummary(_WireModel):
    """Outcome of one matching pass across all eligible jobs."""

    run_id: str = Field(..., alias="runId")
    state: Literal["pending", "running", "succeeded", "failed"] = "pending"
    created_at: float = Field(..., alias="createdAt")
    started_at: Optional[float] = Field(default=None, alias="startedAt")
    completed_at: Optional[float] = Field(default=None, alias="completedAt")
    examined: int = 0
    assigned: int = 0
    unmatched: int = 0
    conflicts: int = 0
    failed: int = 0
    assignments: List[MatchAssignment] = Field(default_factory=list)
    error: Optional[str] = None


class MatchAck(_WireModel):
    """Acknowledgement returned by the match trigger; carries no results."""

    message: str
    run_id: str = Field(..., alias="runId")


__all__ = [
    "AgentCreateIn",
    "AgentUpdateIn",
    "JobCreateIn",
    "JobStatusIn",
    "JobUpdateIn",
    "MatchAck",
    "MatchAssignment",
    "MatchCandidate",
    "MatchRunSummary",
]
