"""Run/attempt counters for the loyalty job scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class JobRunState:
    job_id: str
    task: str
    runs: int = 0
    successes: int = 0
    run_failures: int = 0
    attempt_failures: int = 0
    retries: int = 0
    consecutive_failures: int = 0
    runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0
    last_result: Dict[str, object] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": {
                "runs": self.runs,
                "success": self.successes,
                "run_failures": self.run_failures,
                "attempt_failures": self.attempt_failures,
                "retries": self.retries,
                "consecutive_failures": self.consecutive_failures,
            },
            "runtime_seconds": self.runtime_seconds,
            "last_started_at": _iso(self.last_started_at),
            "last_finished_at": _iso(self.last_finished_at),
            "last_success_at": _iso(self.last_success_at),
            "last_error_at": _iso(self.last_error_at),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
            "last_result": dict(self.last_result),
        }


@dataclass
class SchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, JobRunState]

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": dict(self.totals),
            "jobs": {job_id: state.as_dict() for job_id, state in self.jobs.items()},
        }


class SchedulerObservabilityStore:
    """Thread-safe per-job dispatch metrics."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, JobRunState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> JobRunState:
        state = self._jobs.get(job_id)
        if state is None:
            state = self._jobs[job_id] = JobRunState(job_id=job_id, task=task)
        state.task = task
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.runs += 1
            state.last_started_at = _utcnow()
            state.last_finished_at = None
            state.last_attempts = 0

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.attempt_failures += 1
            state.consecutive_failures += 1
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def record_retry(self, job_id: str, task: str, *, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.retries += 1
            state.last_attempts = attempts

    def record_success(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        result: Dict[str, object] | None = None,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.successes += 1
            state.runtime_seconds += runtime_seconds
            state.last_finished_at = state.last_success_at = _utcnow()
            state.last_attempts = attempts
            state.consecutive_failures = 0
            state.last_error = None
            state.last_error_at = None
            state.last_result = dict(result or {})

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.run_failures += 1
            state.runtime_seconds += runtime_seconds
            state.last_finished_at = state.last_error_at = _utcnow()
            state.last_error = error
            state.last_attempts = attempts

    def snapshot(self) -> SchedulerSnapshot:
        with self._lock:
            jobs = {
                job_id: JobRunState(**{**state.__dict__, "last_result": dict(state.last_result)})
                for job_id, state in self._jobs.items()
            }
        totals = {
            "runs": sum(state.runs for state in jobs.values()),
            "success": sum(state.successes for state in jobs.values()),
            "run_failures": sum(state.run_failures for state in jobs.values()),
            "attempt_failures": sum(state.attempt_failures for state in jobs.values()),
            "retries": sum(state.retries for state in jobs.values()),
        }
        return SchedulerSnapshot(totals=totals, jobs=jobs)


_SCHEDULER_STORE = SchedulerObservabilityStore()


def get_scheduler_store() -> SchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = [
    "JobRunState",
    "SchedulerObservabilityStore",
    "SchedulerSnapshot",
    "get_scheduler_store",
]
