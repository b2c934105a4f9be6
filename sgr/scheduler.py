from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from threading import Event, Lock, Thread
from typing import Any

from . import db
from .alerts import send_email
from .runtime import RuntimeState
from .settings import settings


class RunState(str, Enum):
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class TaskTimer:
    """When a task runs. ``interval_s=None`` means a single run at start-up."""

    name: str
    interval_s: float | None = None
    initial_delay_s: float = 0.0

    @property
    def periodic(self) -> bool:
        return self.interval_s is not None


def seed_timer(name: str, base_s: float, rng: random.Random | None = None) -> TaskTimer:
    """Periodic timer of ``base + jitter`` seconds, jitter uniform in [0, base).

    The same period is used for the first delay and every following run. Each
    process draws its own jitter so seeds do not hit the firewall API together.
    """
    base_ms = int(base_s * 1000)
    if base_ms <= 0:
        raise ValueError("base_s must be positive")
    rng = rng or random.Random()
    period_s = (base_ms + rng.randrange(base_ms)) / 1000.0
    return TaskTimer(name=name, interval_s=period_s, initial_delay_s=period_s)


def once_timer(name: str) -> TaskTimer:
    return TaskTimer(name=name)


class Task:
    """Unit of scheduled work.

    ``execute`` receives the current RunState. Tasks with ``run_on_stop`` get
    one more call with STOPPING when the scheduler shuts down.
    """

    name = "task"
    run_on_stop = False

    def execute(self, state: RunState) -> Any:
        raise NotImplementedError


class _Entry:
    def __init__(self, task: Task, timer: TaskTimer):
        self.task = task
        self.timer = timer
        self.lock = Lock()
        self.thread: Thread | None = None


def _in_seconds(s: float) -> str:
    return (datetime.utcnow() + timedelta(seconds=s)).strftime("%Y-%m-%dT%H:%M:%SZ")


class TaskScheduler:
    """Runs each task in its own daemon thread; runs of one task never overlap."""

    def __init__(self, runtime: RuntimeState | None = None):
        self.runtime = runtime or RuntimeState()
        self.state = RunState.RUNNING
        self._entries: dict[str, _Entry] = {}
        self._stop = Event()
        self._started = False

    def add(self, task: Task, timer: TaskTimer) -> None:
        if task.name in self._entries:
            raise ValueError(f"Task '{task.name}' is already scheduled")
        self._entries[task.name] = _Entry(task, timer)
        self.runtime.register_job(task.name, timer.periodic, timer.interval_s)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.state = RunState.RUNNING
        db.log_event("INFO", f"Scheduler started with {len(self._entries)} task(s)")
        for entry in self._entries.values():
            entry.thread = Thread(target=self._loop, args=(entry,), name=f"task-{entry.task.name}", daemon=True)
            entry.thread.start()

    def stop(self, final_run: bool = True, timeout_s: float = 30.0) -> None:
        """Stop the loops, switch to STOPPING, then give run_on_stop tasks a last run."""
        self._stop.set()
        for entry in self._entries.values():
            if entry.thread and entry.thread.is_alive():
                entry.thread.join(timeout_s)
        # Loops are gone; only the final run below sees STOPPING.
        self.state = RunState.STOPPING
        if final_run:
            for entry in self._entries.values():
                if entry.task.run_on_stop:
                    self._run(entry, RunState.STOPPING)
        db.log_event("INFO", "Scheduler stopped")

    def run_now(self, name: str) -> Any:
        """Run a task in the caller's thread; errors are recorded and re-raised."""
        entry = self._entries.get(name)
        if entry is None:
            raise KeyError(name)
        return self._run(entry, self.state, raise_errors=True)

    def _loop(self, entry: _Entry) -> None:
        timer = entry.timer
        self.runtime.set_next_run(entry.task.name, _in_seconds(timer.initial_delay_s))
        if self._stop.wait(timer.initial_delay_s):
            return
        self._run(entry, self.state)
        if not timer.periodic:
            self.runtime.set_next_run(entry.task.name, None)
            return
        while True:
            self.runtime.set_next_run(entry.task.name, _in_seconds(timer.interval_s))  # type: ignore[arg-type]
            if self._stop.wait(timer.interval_s):
                return
            self._run(entry, self.state)

    def _run(self, entry: _Entry, state: RunState, raise_errors: bool = False) -> Any:
        name = entry.task.name
        with entry.lock:
            self.runtime.mark_started(name)
            try:
                result = entry.task.execute(state)
            except Exception as e:
                msg = f"{type(e).__name__}: {e}"
                self.runtime.mark_failed(name, msg)
                db.log_event("ERROR", f"Task {name} failed ({state.value}): {msg}", job=name)
                self._maybe_email(name, state, msg)
                if raise_errors:
                    raise
                return None
            added = getattr(result, "to_add", ())
            removed = getattr(result, "to_remove", ())
            self.runtime.mark_succeeded(name, list(added), list(removed))
            return result

    def _maybe_email(self, name: str, state: RunState, msg: str) -> None:
        if not settings.enable_email:
            return
        subject = f"SGR task failed: {name}"
        body = f"Task: {name}\nState: {state.value}\nError: {msg}\n\nThe next scheduled run will retry from fresh state."
        send_email(subject, body)
