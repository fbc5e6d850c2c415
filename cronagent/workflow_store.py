"""Transitions of workflow task and plan state kept in a key-value store.

Every function works on a transactional view of the store: an object whose
``get(key)`` gives the stored text (empty or None when the key is absent) and
whose ``put(key, value)`` writes it.
"""

from __future__ import annotations

import time
from typing import Protocol

from cronagent.workflow_state import (
    PlanState,
    TaskStatus,
    WorkflowStateError,
    WorkflowTaskScheduleRecord,
    WorkflowTaskStates,
)


class KV(Protocol):
    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str) -> None: ...


def _status_text(status: str | TaskStatus) -> str:
    return status.value if isinstance(status, TaskStatus) else status


def _now() -> int:
    return int(time.time())


def get_task_states(kv: KV, key: str) -> WorkflowTaskStates | None:
    """The stored states under ``key``, or None for a task that never ran."""
    value = kv.get(key)
    if not value:
        return None
    return WorkflowTaskStates.from_json(value)


def set_task_starting(
    kv: KV,
    key: str,
    project_id: int,
    task_id: str,
    workflow_id: int,
    command: str,
    tmp_id: str,
) -> WorkflowTaskStates:
    """Mark a workflow task as starting and count one more schedule."""
    value = kv.get(key)
    now = _now()
    record = WorkflowTaskScheduleRecord(
        tmp_id=tmp_id, status=TaskStatus.STARTING.value, event_time=now
    )
    if not value:
        states = WorkflowTaskStates(
            project_id=project_id,
            task_id=task_id,
            workflow_id=workflow_id,
            current_status=TaskStatus.STARTING.value,
            command=command,
            schedule_count=1,
            start_time=now,
            schedule_records=[record],
        )
    else:
        states = WorkflowTaskStates.from_json(value)
        states.current_status = TaskStatus.STARTING.value
        states.schedule_count += 1
        states.schedule_records.append(record)
    kv.put(key, states.to_json())
    return states


def set_task_running(kv: KV, key: str, tmp_id: str, agent_ip: str) -> WorkflowTaskStates:
    """Mark a workflow task as running on ``agent_ip``.

    Raises WorkflowStateError when no states are stored or they cannot be decoded.
    """
    value = kv.get(key)
    if not value:
        raise WorkflowStateError(f"no workflow task states stored under {key}")
    states = WorkflowTaskStates.from_json(value)
    states.current_status = TaskStatus.RUNNING.value
    states.schedule_records.append(
        WorkflowTaskScheduleRecord(
            tmp_id=tmp_id,
            agent_ip=agent_ip,
            status=TaskStatus.RUNNING.value,
            event_time=_now(),
        )
    )
    kv.put(key, states.to_json())
    return states


def set_task_not_running(kv: KV, key: str, tmp_id: str, reason: str) -> WorkflowTaskStates | None:
    """Put a workflow task back to not running, recording why.

    Missing or undecodable states are left untouched and give None.
    """
    value = kv.get(key)
    if not value:
        return None
    try:
        states = WorkflowTaskStates.from_json(value)
    except WorkflowStateError:
        return None
    states.current_status = TaskStatus.NOT_RUNNING.value
    states.schedule_records.append(
        WorkflowTaskScheduleRecord(
            tmp_id=tmp_id,
            status=TaskStatus.NOT_RUNNING.value,
            result=reason,
            event_time=_now(),
        )
    )
    kv.put(key, states.to_json())
    return states


def set_task_finished(
    kv: KV,
    key: str,
    agent_ip: str,
    status: str | TaskStatus,
    result: str,
    tmp_id: str,
    limit: int,
) -> bool:
    """Record the end of a workflow task run.

    A failed run is retried (status back to not running) until the task has
    been scheduled ``limit`` times; then it fails for good. Gives True when
    that final failure finishes the whole plan.
    """
    value = kv.get(key)
    if not value:
        return False
    states = WorkflowTaskStates.from_json(value)
    if states.current_status in (TaskStatus.DONE.value, TaskStatus.FAIL.value):
        return False

    status_text = _status_text(status)
    end_time = _now()
    states.schedule_records.append(
        WorkflowTaskScheduleRecord(
            tmp_id=tmp_id,
            status=status_text,
            result=result,
            event_time=end_time,
            agent_ip=agent_ip,
        )
    )

    plan_finished = False
    if status_text == TaskStatus.FAIL.value:
        if states.schedule_count >= limit:
            states.current_status = TaskStatus.FAIL.value
            states.end_time = end_time
            plan_finished = True
        else:
            states.current_status = TaskStatus.NOT_RUNNING.value
    elif status_text == TaskStatus.DONE.value:
        states.current_status = TaskStatus.DONE.value
        states.end_time = end_time

    kv.put(key, states.to_json())
    return plan_finished


def set_plan_running(kv: KV, key: str, workflow_id: int) -> PlanState:
    """Mark a workflow plan as running, creating its state on the first try."""
    value = kv.get(key)
    now = _now()
    if not value:
        state = PlanState(
            workflow_id=workflow_id,
            start_time=now,
            status=TaskStatus.RUNNING.value,
            latest_try_time=now,
        )
    else:
        state = PlanState.from_json(value)
        state.latest_try_time = now
        state.status = TaskStatus.RUNNING.value
    kv.put(key, state.to_json())
    return state