"""Scoring and ranking of registered agents against a pending job.

Each agent is scored independently::

    50 if agent.classification == job.category (exact, case-sensitive)
  + 10 for every distinct tag the agent and job share
  + 20 if the agent auto-accepts jobs

Agents scoring zero are not candidates, and an agent whose stored record
cannot be scored is logged and left out rather than failing the job. Ties
on the top score resolve to the lexicographically smallest agent id so
repeated passes pick the same agent.
Nothing here mutates its inputs.
"""

from __future__ import annotations

import logging
from typing import Any, FrozenSet, Iterable, List, Optional

from .models import MatchCandidate

LOGGER = logging.getLogger(__name__)

CATEGORY_MATCH_POINTS = 50
SHARED_TAG_POINTS = 10
AUTO_ACCEPT_POINTS = 20


class MatchingError(RuntimeError):
    """Raised when a job or agent record is too malformed to score."""


def _tag_set(tags: Any, owner: str) -> FrozenSet[str]:
    if tags is None or isinstance(tags, (str, bytes)) or not isinstance(tags, (list, tuple, set, frozenset)):
        raise MatchingError(f"{owner} has no usable tags")
    return frozenset(str(tag) for tag in tags)


def _text(value: Any, owner: str, field: str) -> str:
    if not isinstance(value, str):
        raise MatchingError(f"{owner} has no usable {field}")
    return value


def _score(agent: Any, category: str, job_tags: FrozenSet[str]) -> int:
    owner = f"Agent `{getattr(agent, 'id', '?')}`"
    score = 0
    if _text(getattr(agent, "classification", None), owner, "classification") == category:
        score += CATEGORY_MATCH_POINTS
    shared = _tag_set(getattr(agent, "tags", None), owner) & job_tags
    score += SHARED_TAG_POINTS * len(shared)
    if getattr(agent, "auto_accept_jobs", False) is True:
        score += AUTO_ACCEPT_POINTS
    return score


def score_agent(agent: Any, job: Any) -> int:
    """Return the match score of ``agent`` for ``job``."""

    owner = f"Job `{getattr(job, 'id', '?')}`"
    category = _text(getattr(job, "category", None), owner, "category")
    return _score(agent, category, _tag_set(getattr(job, "tags", None), owner))


def rank_agents(job: Any, agents: Iterable[Any]) -> List[MatchCandidate]:
    """Return candidates for ``job`` ordered best first.

    An empty agent collection, or one where nobody scores, yields ``[]``.
    A malformed job raises :class:`MatchingError`; malformed agents are skipped.
    """

    owner = f"Job `{getattr(job, 'id', '?')}`"
    category = _text(getattr(job, "category", None), owner, "category")
    job_tags = _tag_set(getattr(job, "tags", None), owner)
    candidates: List[MatchCandidate] = []
    for agent in agents:
        try:
            score = _score(agent, category, job_tags)
        except MatchingError as exc:
            LOGGER.warning(
                "match.agent.skipped",
                extra={"agent_id": getattr(agent, "id", None), "job_id": getattr(job, "id", None), "error": str(exc)},
            )
            continue
        if score > 0:
            candidates.append(MatchCandidate(agent_id=str(agent.id), score=score))
    candidates.sort(key=lambda candidate: (-candidate.score, candidate.agent_id))
    return candidates


def best_match(job: Any, agents: Iterable[Any]) -> Optional[MatchCandidate]:
    ranked = rank_agents(job, agents)
    return ranked[0] if ranked else None


__all__ = [
    "AUTO_ACCEPT_POINTS",
    "CATEGORY_MATCH_POINTS",
    "SHARED_TAG_POINTS",
    "MatchingError",
    "best_match",
    "rank_agents",
    "score_agent",
]
