"""Operator CLI that triggers job matching and observes the outcome.

The trigger only acknowledges; whether a job was matched is learned by
re-reading it after a fixed delay. That delay is a heuristic: a slow pass may
not be visible yet, in which case the operator simply asks again.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx

from orchestrator.config import get_settings
from orchestrator.models import MatchAck, MatchRunSummary


class MatchClientError(RuntimeError):
    """Raised when the marketplace API cannot be reached or rejects a request."""


@dataclass
class Observation:
    job_id: str
    status: str
    agent_id: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.agent_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"jobId": self.job_id, "status": self.status, "agentId": self.agent_id, "matched": self.matched}


class MatchClient:
    """Thin HTTP client over the marketplace API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float = 10.0,
        refresh_delay: float | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._refresh_delay = settings.refresh_delay_seconds if refresh_delay is None else refresh_delay
        self._sleep = sleep
        self._client = httpx.Client(base_url=self._base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "MatchClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _request(self, method: str, path: str, json_payload: dict | None = None) -> Any:
        try:
            response = self._client.request(method, path, json=json_payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MatchClientError(
                f"API {method} {path} failed: {exc.response.status_code} {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise MatchClientError(f"API request failed: {exc}") from exc
        return response.json()

    # ------------------------------------------------------------------
    # operations
    def request_match(self) -> MatchAck:
        """Fire the trigger and return its acknowledgement without waiting."""

        return MatchAck.model_validate(self._request("POST", "/agents/match-jobs"))

    def run_status(self, run_id: str) -> MatchRunSummary:
        return MatchRunSummary.model_validate(self._request("GET", f"/agents/match-jobs/{run_id}"))

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/jobs/{job_id}")

    def list_jobs(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/jobs")

    def set_status(self, job_id: str, status: str) -> Dict[str, Any]:
        return self._request("PATCH", f"/jobs/{job_id}/status/{status}")

    def observe(self, job_ids: Iterable[str] = ()) -> List[Observation]:
        """Wait the refresh delay, then re-read the given jobs (or all jobs)."""

        self._sleep(self._refresh_delay)
        ids = list(job_ids)
        records = [self.get_job(job_id) for job_id in ids] if ids else self.list_jobs()
        return [
            Observation(job_id=record["id"], status=record["status"], agent_id=record.get("agentId"))
            for record in records
        ]

    def request_and_observe(self, job_ids: Iterable[str] = ()) -> Tuple[MatchAck, List[Observation]]:
        ack = self.request_match()
        return ack, self.observe(job_ids)


def _client(args: argparse.Namespace) -> MatchClient:
    return MatchClient(args.api_url, timeout=args.timeout, refresh_delay=args.delay)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def command_match(args: argparse.Namespace) -> None:
    with _client(args) as client:
        try:
            if not args.watch:
                _print(client.request_match().model_dump(mode="json", by_alias=True))
                return
            ack, observations = client.request_and_observe(args.job_ids)
        except MatchClientError as exc:
            raise SystemExit(f"Matching request failed: {exc}") from exc
    _print(
        {
            "ack": ack.model_dump(mode="json", by_alias=True),
            "jobs": [observation.to_dict() for observation in observations],
        }
    )


def command_status(args: argparse.Namespace) -> None:
    with _client(args) as client:
        try:
            summary = client.run_status(args.run_id)
        except MatchClientError as exc:
            raise SystemExit(f"Status lookup failed: {exc}") from exc
    _print(summary.model_dump(mode="json", by_alias=True))


def command_job(args: argparse.Namespace) -> None:
    with _client(args) as client:
        try:
            _print(client.get_job(args.job_id))
        except MatchClientError as exc:
            raise SystemExit(f"Job lookup failed: {exc}") from exc


def command_set_status(args: argparse.Namespace) -> None:
    with _client(args) as client:
        try:
            _print(client.set_status(args.job_id, args.status))
        except MatchClientError as exc:
            raise SystemExit(f"Status update failed: {exc}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Trigger job matching and inspect job assignments.")
    parser.add_argument("--api-url", default=None, help="Marketplace API base (e.g. http://localhost:3001/api)")
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP timeout in seconds.")
    parser.add_argument("--delay", type=float, default=None, help="Seconds to wait before re-reading jobs.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    match = subparsers.add_parser("match", help="Trigger a matching pass")
    match.add_argument("job_ids", nargs="*", help="Jobs to re-read when --watch is given (default: all)")
    match.add_argument("--watch", action="store_true", help="Re-read jobs after the refresh delay")
    match.set_defaults(func=command_match)

    status = subparsers.add_parser("status", help="Show the summary of a matching pass")
    status.add_argument("run_id")
    status.set_defaults(func=command_status)

    job = subparsers.add_parser("job", help="Show one job")
    job.add_argument("job_id")
    job.set_defaults(func=command_job)

    set_status = subparsers.add_parser("set-status", help="Overwrite the status of a job")
    set_status.add_argument("job_id")
    set_status.add_argument("status", choices=["PENDING", "RUNNING", "COMPLETED", "FAILED"])
    set_status.set_defaults(func=command_set_status)

    return parser


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main(sys.argv[1:])
