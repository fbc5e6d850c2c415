"""The agent's local scheduler: plan bookkeeping, running tasks and commands."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Callable, Protocol

from cronagent.events import TaskEvent, TaskEventType, TaskInfo
from cronagent.plans import PlanTable, PlanType, TaskSchedulePlan

log = logging.getLogger(__name__)

TASK_STATUS_START = 1
RELOAD_CONFIG_COMMAND = "reload_config"
IDLE_RESCHEDULE_SECONDS = 1.0

_DUPLICATE_SCHEDULE_MSG = "任务执行中，重复调度，请确保任务超时时间配置合理或检查任务是否运行正常"
_DUPLICATE_ACTIVE_MSG = "任务执行中，请勿重复执行或稍后再试"

CronParser = Callable[[str], Callable[[datetime], datetime]]


class TaskAlreadyRunning(Exception):
    """Raised when a task is started while an earlier run is still executing."""


class UnsupportedCommand(Exception):
    """Raised for a command the agent does not know."""


class _Cancellable(Protocol):
    def cancel(self) -> None: ...


class TaskScheduler:
    """Keeps the plan table and the record of tasks currently executing.

    ``cron_parser`` turns a task's cron expression into a function giving the
    next run time after a given moment; it raises ValueError for a bad
    expression.
    """

    def __init__(self, cron_parser: CronParser, plans: PlanTable | None = None) -> None:
        self._cron_parser = cron_parser
        self.plans = plans if plans is not None else PlanTable()
        self._executing: dict[str, _Cancellable] = {}
        self._lock = threading.Lock()

    def set_executing(self, key: str, info: _Cancellable) -> None:
        with self._lock:
            self._executing[key] = info

    def executing(self, key: str) -> _Cancellable | None:
        """The executing record under ``key``, or None when the task is idle."""
        with self._lock:
            return self._executing.get(key)

    def delete_executing(self, key: str) -> None:
        with self._lock:
            self._executing.pop(key, None)

    def executing_count(self) -> int:
        with self._lock:
            return len(self._executing)

    def _build_plan(self, task: TaskInfo, plan_type: PlanType) -> TaskSchedulePlan:
        now = datetime.now()
        if plan_type is PlanType.ACTIVE:
            return TaskSchedulePlan(task=task, plan_type=plan_type, next_time=now, tmp_id=task.tmp_id)
        expr = self._cron_parser(task.cron)
        return TaskSchedulePlan(task=task, plan_type=plan_type, next_time=expr(now), expr=expr, tmp_id=task.tmp_id)

    def _build_workflow_plan(self, task: TaskInfo) -> TaskSchedulePlan:
        return TaskSchedulePlan(
            task=task, plan_type=PlanType.NORMAL, next_time=datetime.now(), tmp_id=task.tmp_id
        )

    def handle_event(self, event: TaskEvent) -> TaskSchedulePlan | None:
        """Apply an event to the plan table.

        Temporary and workflow events give back the plan to start right away;
        all other events give None.
        """
        task = event.task
        key = task.scheduler_key()
        kind = event.event_type

        if kind is TaskEventType.TEMPORARY:
            return self._build_plan(task, PlanType.ACTIVE)
        if kind is TaskEventType.WORKFLOW_SCHEDULE:
            return self._build_workflow_plan(task)
        if kind is TaskEventType.SAVE and task.status == TASK_STATUS_START:
            try:
                plan = self._build_plan(task, PlanType.NORMAL)
            except ValueError as exc:
                log.error("build task schedule plan error: %s", exc)
                return None
            self.plans.set_plan(key, plan)
            return None
        if kind in (TaskEventType.SAVE, TaskEventType.DELETE):
            self.plans.remove_plan(key)
            return None
        if kind is TaskEventType.KILL:
            info = self.executing(key)
            if info is not None:
                info.cancel()
        return None

    def check_can_start(self, plan: TaskSchedulePlan) -> None:
        """Raise TaskAlreadyRunning if the plan's task is executing.

        A plan without a temporary id is given a fresh one.
        """
        if not plan.tmp_id:
            plan.tmp_id = uuid.uuid4().hex
        if self.executing(plan.task.scheduler_key()) is not None:
            message = _DUPLICATE_ACTIVE_MSG if plan.plan_type is PlanType.ACTIVE else _DUPLICATE_SCHEDULE_MSG
            raise TaskAlreadyRunning(message)

    def try_schedule(self, now: datetime, start: Callable[[TaskSchedulePlan], None]) -> float:
        """Start every due plan and return the seconds until the next one is due."""
        if self.plans.plan_count() == 0:
            return IDLE_RESCHEDULE_SECONDS

        nearest: datetime | None = None
        for key, plan in self.plans.plans():
            if plan.next_time is None or plan.next_time <= now:
                try:
                    start(plan)
                except Exception as exc:  # a failed start must not stop scheduling
                    log.warning("failed to start task %s: %s", key, exc)
                if plan.expr is None:
                    self.plans.remove_plan(key)
                    continue
                plan.next_time = plan.expr(now)
            if nearest is None or plan.next_time < nearest:
                nearest = plan.next_time

        if nearest is None:
            return IDLE_RESCHEDULE_SECONDS
        return (nearest - now).total_seconds()


def handle_command(command: str, reload: Callable[[], None]) -> str:
    """Run an agent command sent by the center; gives "ok" on success."""
    if command != RELOAD_CONFIG_COMMAND:
        raise UnsupportedCommand(f"unsupport command {command}")
    reload()
    return "ok"