from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from threading import Lock


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class JobStatus:
    name: str
    periodic: bool
    interval_s: float | None
    runs: int = 0
    failures: int = 0
    running: bool = False
    last_started_at: str | None = None
    last_finished_at: str | None = None
    last_error: str | None = None
    last_added: list[str] = field(default_factory=list)
    last_removed: list[str] = field(default_factory=list)
    next_run_at: str | None = None


class RuntimeState:
    """In-memory status of scheduled jobs."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.jobs: dict[str, JobStatus] = {}

    def register_job(self, name: str, periodic: bool, interval_s: float | None) -> None:
        with self.lock:
            self.jobs[name] = JobStatus(name=name, periodic=periodic, interval_s=interval_s)

    def mark_started(self, name: str) -> None:
        with self.lock:
            st = self.jobs.setdefault(name, JobStatus(name=name, periodic=False, interval_s=None))
            st.running = True
            st.last_started_at = utc_now()

    def mark_succeeded(self, name: str, added: list[str], removed: list[str]) -> None:
        with self.lock:
            st = self.jobs[name]
            st.running = False
            st.runs += 1
            st.last_finished_at = utc_now()
            st.last_error = None
            st.last_added = sorted(added)
            st.last_removed = sorted(removed)

    def mark_failed(self, name: str, error: str) -> None:
        with self.lock:
            st = self.jobs[name]
            st.running = False
            st.runs += 1
            st.failures += 1
            st.last_finished_at = utc_now()
            st.last_error = error

    def set_next_run(self, name: str, when: str | None) -> None:
        with self.lock:
            if name in self.jobs:
                self.jobs[name].next_run_at = when

    def get_job(self, name: str) -> JobStatus | None:
        with self.lock:
            st = self.jobs.get(name)
            return replace(st) if st else None

    def list_jobs(self) -> list[JobStatus]:
        with self.lock:
            return [replace(st) for st in self.jobs.values()]
