import json

import pytest

from cronagent.events import (
    RemoteEventType,
    TaskEvent,
    TaskEventType,
    TaskInfo,
    scheduler_key,
    task_event_from_remote,
)


def _task(**kw):
    base = dict(task_id="t1", project_id=7, name="backup", command="echo hi", cron="* * * * * *")
    base.update(kw)
    return TaskInfo(**base)


def test_round_trip_preserves_all_fields():
    task = _task(timeout=30, status=1, noseize=1, tmp_id="x", client_ip="10.0.0.1", workflow_id=3)
    assert TaskInfo.from_json(task.to_json()) == task


def test_round_trip_without_workflow():
    task = _task()
    restored = TaskInfo.from_json(task.to_json())
    assert restored.workflow_id is None
    assert restored == task


def test_json_carries_flow_info_object():
    data = json.loads(_task(workflow_id=5).to_json())
    assert data["flow_info"] == {"workflow_id": 5}
    assert data["command"] == "echo hi"


def test_scheduler_key_matches_function():
    task = _task()
    assert task.scheduler_key() == scheduler_key(7, "t1")


def test_scheduler_key_distinguishes_projects():
    assert scheduler_key(1, "a") != scheduler_key(2, "a")
    assert scheduler_key(1, "a") == scheduler_key(1, "a")


def test_from_json_accepts_str_and_defaults():
    task = TaskInfo.from_json('{"task_id": "abc"}')
    assert task.task_id == "abc"
    assert task.project_id == 0
    assert task.command == ""


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"project_id": "nope"}', '{"flow_info": 3}'])
def test_from_json_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        TaskInfo.from_json(payload)


@pytest.mark.parametrize(
    "remote, local",
    [
        (RemoteEventType.PUT, TaskEventType.SAVE),
        (RemoteEventType.TMP_SCHEDULE, TaskEventType.TEMPORARY),
        (RemoteEventType.DELETE, TaskEventType.DELETE),
        (RemoteEventType.TASK_STOP, TaskEventType.KILL),
    ],
)
def test_remote_events_map_to_local(remote, local):
    task = _task()
    event = task_event_from_remote(remote, task.to_json())
    assert event == TaskEvent(local, task)


def test_remote_event_accepts_plain_string_type():
    task = _task()
    event = task_event_from_remote(RemoteEventType.PUT.value, task.to_json())
    assert event.event_type is TaskEventType.SAVE


def test_workflow_schedule_is_not_a_plan_event():
    assert task_event_from_remote(RemoteEventType.WORKFLOW_SCHEDULE, _task().to_json()) is None


def test_unknown_event_type_is_dropped():
    assert task_event_from_remote("something-else", _task().to_json()) is None


@pytest.mark.parametrize("remote", list(RemoteEventType))
def test_bad_payload_is_dropped(remote):
    assert task_event_from_remote(remote, b"{broken") is None