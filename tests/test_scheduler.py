from datetime import datetime, timedelta

import pytest

from cronagent.events import TaskEvent, TaskEventType, TaskInfo
from cronagent.plans import PlanTable, PlanType, TaskSchedulePlan
from cronagent.scheduler import (
    RELOAD_CONFIG_COMMAND,
    TASK_STATUS_START,
    TaskAlreadyRunning,
    TaskScheduler,
    UnsupportedCommand,
    handle_command,
)


def every_seconds(expr):
    step = int(expr)
    return lambda t: t + timedelta(seconds=step)


class Token:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


@pytest.fixture
def scheduler():
    return TaskScheduler(every_seconds, PlanTable(debounce=60))


def make_task(task_id="t1", status=TASK_STATUS_START, cron="10", project_id=3):
    return TaskInfo(task_id=task_id, project_id=project_id, cron=cron, status=status, command="echo hi")


def test_executing_table(scheduler):
    token = Token()
    scheduler.set_executing("3_t1", token)
    assert scheduler.executing("3_t1") is token
    assert scheduler.executing_count() == 1
    scheduler.delete_executing("3_t1")
    assert scheduler.executing("3_t1") is None
    assert scheduler.executing_count() == 0


def test_save_event_stores_plan(scheduler):
    task = make_task()
    assert scheduler.handle_event(TaskEvent(TaskEventType.SAVE, task)) is None
    plan = scheduler.plans.get_plan(task.scheduler_key())
    assert plan.task is task
    assert plan.plan_type is PlanType.NORMAL
    assert plan.expr is not None


def test_save_with_stopped_status_removes_plan(scheduler):
    task = make_task()
    scheduler.handle_event(TaskEvent(TaskEventType.SAVE, task))
    stopped = make_task(status=0)
    scheduler.handle_event(TaskEvent(TaskEventType.SAVE, stopped))
    assert scheduler.plans.get_plan(task.scheduler_key()) is None
    assert scheduler.plans.plan_count() == 0


def test_delete_event_removes_plan(scheduler):
    task = make_task()
    scheduler.handle_event(TaskEvent(TaskEventType.SAVE, task))
    scheduler.handle_event(TaskEvent(TaskEventType.DELETE, task))
    assert scheduler.plans.plan_count() == 0


def test_bad_cron_is_not_stored(scheduler):
    task = make_task(cron="not a cron")
    assert scheduler.handle_event(TaskEvent(TaskEventType.SAVE, task)) is None
    assert scheduler.plans.plan_count() == 0


def test_kill_event_cancels_executing_task(scheduler):
    task = make_task()
    token = Token()
    scheduler.set_executing(task.scheduler_key(), token)
    scheduler.handle_event(TaskEvent(TaskEventType.KILL, task))
    assert token.cancelled is True


def test_temporary_event_returns_active_plan(scheduler):
    task = make_task()
    plan = scheduler.handle_event(TaskEvent(TaskEventType.TEMPORARY, task))
    assert plan.plan_type is PlanType.ACTIVE
    assert plan.task is task
    assert scheduler.plans.plan_count() == 0


def test_workflow_event_returns_plan(scheduler):
    task = make_task()
    plan = scheduler.handle_event(TaskEvent(TaskEventType.WORKFLOW_SCHEDULE, task))
    assert plan.task is task
    assert scheduler.plans.plan_count() == 0


def test_check_can_start_assigns_tmp_id(scheduler):
    plan = TaskSchedulePlan(task=make_task())
    scheduler.check_can_start(plan)
    assert len(plan.tmp_id) > 0


def test_check_can_start_keeps_existing_tmp_id(scheduler):
    plan = TaskSchedulePlan(task=make_task(), tmp_id="abc")
    scheduler.check_can_start(plan)
    assert plan.tmp_id == "abc"


def test_check_can_start_rejects_running_task(scheduler):
    task = make_task()
    scheduler.set_executing(task.scheduler_key(), Token())
    active = TaskSchedulePlan(task=task, plan_type=PlanType.ACTIVE)
    normal = TaskSchedulePlan(task=task, plan_type=PlanType.NORMAL)
    with pytest.raises(TaskAlreadyRunning) as active_err:
        scheduler.check_can_start(active)
    with pytest.raises(TaskAlreadyRunning) as normal_err:
        scheduler.check_can_start(normal)
    assert str(active_err.value) != str(normal_err.value)


def test_try_schedule_without_plans_waits_one_second(scheduler):
    started = []
    assert scheduler.try_schedule(datetime.now(), started.append) == 1.0
    assert started == []


def test_try_schedule_starts_due_plans(scheduler):
    now = datetime(2024, 1, 1, 12, 0, 0)
    due = TaskSchedulePlan(task=make_task("a"), next_time=now, expr=every_seconds("5"))
    later = TaskSchedulePlan(task=make_task("b"), next_time=now + timedelta(seconds=30), expr=every_seconds("5"))
    scheduler.plans.set_plan("a", due)
    scheduler.plans.set_plan("b", later)
    started = []
    delay = scheduler.try_schedule(now, started.append)
    assert started == [due]
    assert due.next_time == now + timedelta(seconds=5)
    assert later.next_time == now + timedelta(seconds=30)
    assert delay == (due.next_time - now).total_seconds()


def test_try_schedule_survives_failing_start(scheduler):
    now = datetime(2024, 1, 1, 12, 0, 0)
    plan = TaskSchedulePlan(task=make_task(), next_time=now, expr=every_seconds("7"))
    scheduler.plans.set_plan("k", plan)

    def start(p):
        raise TaskAlreadyRunning("busy")

    delay = scheduler.try_schedule(now, start)
    assert plan.next_time == now + timedelta(seconds=7)
    assert delay == (plan.next_time - now).total_seconds()


def test_handle_command_reload():
    calls = []
    assert handle_command(RELOAD_CONFIG_COMMAND, lambda: calls.append(1)) == "ok"
    assert calls == [1]


def test_handle_command_unsupported():
    calls = []
    with pytest.raises(UnsupportedCommand, match="unsupport command restart"):
        handle_command("restart", lambda: calls.append(1))
    assert calls == []


def test_handle_command_reload_error_propagates():
    def reload():
        raise ValueError("invalid config path")

    with pytest.raises(ValueError, match="invalid config path"):
        handle_command(RELOAD_CONFIG_COMMAND, reload)