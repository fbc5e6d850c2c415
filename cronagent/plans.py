"""The agent's table of scheduled task plans and its per-project digest."""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Callable

from cronagent.events import TaskInfo


class PlanType(IntEnum):
    """Whether a plan runs on its schedule or was started on request."""

    NORMAL = 1
    ACTIVE = 2


@dataclass
class TaskSchedulePlan:
    """A task together with when it should next run."""

    task: TaskInfo
    plan_type: PlanType = PlanType.NORMAL
    next_time: datetime | None = None
    expr: Callable[[datetime], datetime] | None = None
    tmp_id: str = ""


class _Debouncer:
    """Calls ``func`` once, ``delay`` seconds after the last trigger."""

    def __init__(self, delay: float, func: Callable[[], None]) -> None:
        self._delay = delay
        self._func = func
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def __call__(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._func)
            self._timer.daemon = True
            self._timer.start()


class PlanTable:
    """Thread-safe mapping of scheduler keys to plans."""

    def __init__(self, debounce: float = 1.0) -> None:
        self._plans: dict[str, TaskSchedulePlan] = {}
        self._lock = threading.RLock()
        self._hash_lock = threading.Lock()
        self._hashes: dict[int, str] = {}
        self._latest_refresh: float | None = None
        self._debounced = _Debouncer(debounce, self.calc_plan_hash)

    def set_plan(self, key: str, plan: TaskSchedulePlan) -> None:
        with self._lock:
            self._plans[key] = plan
        self._debounced()

    def get_plan(self, key: str) -> TaskSchedulePlan | None:
        with self._lock:
            return self._plans.get(key)

    def remove_plan(self, key: str) -> None:
        with self._lock:
            self._plans.pop(key, None)
        self._debounced()

    def remove_all(self) -> None:
        with self._lock:
            self._plans.clear()

    def plan_count(self) -> int:
        with self._lock:
            return len(self._plans)

    def plans(self) -> list[tuple[str, TaskSchedulePlan]]:
        """A snapshot of all (key, plan) pairs."""
        with self._lock:
            return list(self._plans.items())

    def calc_plan_hash(self) -> None:
        """Recompute the digest of every project's plans."""
        by_project: dict[int, list[tuple[str, str]]] = {}
        for key, plan in self.plans():
            by_project.setdefault(plan.task.project_id, []).append((key, plan.task.command))

        with self._hash_lock:
            for project_id in [p for p in self._hashes if p not in by_project]:
                del self._hashes[project_id]
            for project_id, entries in by_project.items():
                text = "".join(f"{key};{command};" for key, command in sorted(entries))
                self._hashes[project_id] = hashlib.md5(text.encode("utf-8")).hexdigest()
            self._latest_refresh = time.time()

    def project_task_hash(self, project_id: int) -> tuple[str, int]:
        """The project's digest and the unix time of the last recomputation."""
        with self._hash_lock:
            refreshed = 0 if self._latest_refresh is None else int(self._latest_refresh)
            return self._hashes.get(project_id, ""), refreshed