"""Stored state of workflow plans and of the tasks scheduled inside them."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Lifecycle states of a task run, as stored and exchanged."""

    NOT_RUNNING = "not_running"
    STARTING = "starting"
    RUNNING = "running"
    DONE = "done"
    FAIL = "fail"


class WorkflowStateError(ValueError):
    """Raised when stored workflow state cannot be decoded."""


def _load_object(value: bytes | str, what: str) -> dict[str, Any]:
    try:
        data = json.loads(value)
    except (TypeError, ValueError) as exc:
        raise WorkflowStateError(f"failed to decode {what}: {exc}") from exc
    if not isinstance(data, dict):
        raise WorkflowStateError(f"{what} must be a JSON object")
    return data


def _int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise WorkflowStateError(f"{key} must be a number")
    return int(value)


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise WorkflowStateError(f"{key} must be a string")
    return value


@dataclass
class WorkflowTaskScheduleRecord:
    """One step in the scheduling history of a workflow task."""

    tmp_id: str = ""
    result: str = ""
    status: str = ""
    event_time: int = 0
    agent_ip: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "tmp_id": self.tmp_id,
            "result": self.result,
            "status": self.status,
            "event_time": self.event_time,
            "agent_ip": self.agent_ip,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "WorkflowTaskScheduleRecord":
        if not isinstance(data, dict):
            raise WorkflowStateError("schedule record must be a JSON object")
        return cls(
            tmp_id=_str(data, "tmp_id"),
            result=_str(data, "result"),
            status=_str(data, "status"),
            event_time=_int(data, "event_time"),
            agent_ip=_str(data, "agent_ip"),
        )


def _records(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise WorkflowStateError(f"{key} must be a JSON array")
    return value


@dataclass
class WorkflowTaskStates:
    """Current status and scheduling history of one task in a workflow."""

    project_id: int = 0
    task_id: str = ""
    workflow_id: int = 0
    current_status: str = ""
    schedule_count: int = 0
    command: str = ""
    start_time: int = 0
    end_time: int = 0
    schedule_records: list[WorkflowTaskScheduleRecord] = field(default_factory=list)

    def latest_schedule_record(self) -> WorkflowTaskScheduleRecord | None:
        """The most recent schedule record, or None when there is none."""
        return self.schedule_records[-1] if self.schedule_records else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "task_id": self.task_id,
            "workflow_id": self.workflow_id,
            "current_status": self.current_status,
            "schedule_count": self.schedule_count,
            "command": self.command,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "schedule_records": [r.to_dict() for r in self.schedule_records],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "WorkflowTaskStates":
        if not isinstance(data, dict):
            raise WorkflowStateError("workflow task states must be a JSON object")
        return cls(
            project_id=_int(data, "project_id"),
            task_id=_str(data, "task_id"),
            workflow_id=_int(data, "workflow_id"),
            current_status=_str(data, "current_status"),
            schedule_count=_int(data, "schedule_count"),
            command=_str(data, "command"),
            start_time=_int(data, "start_time"),
            end_time=_int(data, "end_time"),
            schedule_records=[
                WorkflowTaskScheduleRecord.from_dict(r) for r in _records(data, "schedule_records")
            ],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, value: bytes | str) -> "WorkflowTaskStates":
        """Decode stored states; raises WorkflowStateError on bad input."""
        return cls.from_dict(_load_object(value, "workflow task states"))


@dataclass
class PlanState:
    """Run state of a whole workflow plan."""

    workflow_id: int = 0
    start_time: int = 0
    end_time: int = 0
    status: str = ""
    reason: str = ""
    latest_try_time: int = 0
    records: list[WorkflowTaskStates] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "workflow_id": self.workflow_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "status": self.status,
            "reason": self.reason,
            "latest_try_time": self.latest_try_time,
        }
        if self.records:
            data["records"] = [r.to_dict() for r in self.records]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, value: bytes | str) -> "PlanState":
        """Decode a stored plan state; raises WorkflowStateError on bad input."""
        data = _load_object(value, "plan state")
        return cls(
            workflow_id=_int(data, "workflow_id"),
            start_time=_int(data, "start_time"),
            end_time=_int(data, "end_time"),
            status=_str(data, "status"),
            reason=_str(data, "reason"),
            latest_try_time=_int(data, "latest_try_time"),
            records=[WorkflowTaskStates.from_dict(r) for r in _records(data, "records")],
        )