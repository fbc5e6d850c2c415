"""Task descriptions and the events that carry them from the center to an agent."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum, IntEnum

log = logging.getLogger(__name__)


class RemoteEventType(str, Enum):
    """Event types the center sends to agents."""

    PUT = "put"
    DELETE = "delete"
    TMP_SCHEDULE = "tmp_schedule"
    TASK_STOP = "task_stop"
    WORKFLOW_SCHEDULE = "workflow_schedule"


class TaskEventType(IntEnum):
    """Event types handled by the agent's local scheduler."""

    SAVE = 1
    DELETE = 2
    KILL = 3
    TEMPORARY = 4
    WORKFLOW_SCHEDULE = 5


def scheduler_key(project_id: int, task_id: str) -> str:
    """Key under which a task is planned and tracked while executing."""
    return f"{project_id}_{task_id}"


@dataclass
class TaskInfo:
    """A task definition as stored by the center and sent to agents."""

    task_id: str = ""
    project_id: int = 0
    name: str = ""
    command: str = ""
    cron: str = ""
    remark: str = ""
    timeout: int = 0
    create_time: int = 0
    status: int = 0
    is_running: int = 0
    noseize: int = 0
    tmp_id: str = ""
    client_ip: str = ""
    workflow_id: int | None = None

    def scheduler_key(self) -> str:
        return scheduler_key(self.project_id, self.task_id)

    def to_json(self) -> bytes:
        data = {
            "task_id": self.task_id,
            "project_id": self.project_id,
            "name": self.name,
            "command": self.command,
            "cron": self.cron,
            "remark": self.remark,
            "timeout": self.timeout,
            "create_time": self.create_time,
            "status": self.status,
            "is_running": self.is_running,
            "noseize": self.noseize,
            "tmp_id": self.tmp_id,
            "client_ip": self.client_ip,
            "flow_info": None if self.workflow_id is None else {"workflow_id": self.workflow_id},
        }
        return json.dumps(data, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, value: bytes | str) -> "TaskInfo":
        """Parse a task; raises ValueError when the payload is not a valid task."""
        data = json.loads(value)
        if not isinstance(data, dict):
            raise ValueError("task must be a JSON object")
        flow = data.get("flow_info")
        if flow is not None and not isinstance(flow, dict):
            raise ValueError("flow_info must be a JSON object")
        try:
            return cls(
                task_id=str(data.get("task_id", "")),
                project_id=int(data.get("project_id", 0)),
                name=str(data.get("name", "")),
                command=str(data.get("command", "")),
                cron=str(data.get("cron", "")),
                remark=str(data.get("remark", "")),
                timeout=int(data.get("timeout", 0)),
                create_time=int(data.get("create_time", 0)),
                status=int(data.get("status", 0)),
                is_running=int(data.get("is_running", 0)),
                noseize=int(data.get("noseize", 0)),
                tmp_id=str(data.get("tmp_id", "")),
                client_ip=str(data.get("client_ip", "")),
                workflow_id=None if not flow else int(flow.get("workflow_id", 0)),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid task: {exc}") from exc


@dataclass(frozen=True)
class TaskEvent:
    """A change to apply to the agent's plan table."""

    event_type: TaskEventType
    task: TaskInfo


_REMOTE_TO_LOCAL = {
    RemoteEventType.PUT: TaskEventType.SAVE,
    RemoteEventType.TMP_SCHEDULE: TaskEventType.TEMPORARY,
    RemoteEventType.DELETE: TaskEventType.DELETE,
    RemoteEventType.TASK_STOP: TaskEventType.KILL,
}


def task_event_from_remote(event_type: str, value: bytes | str) -> TaskEvent | None:
    """Turn an event pushed by the center into a local task event.

    Unknown event types and undecodable payloads are dropped and give None.
    """
    try:
        local = _REMOTE_TO_LOCAL[RemoteEventType(event_type)]
    except (ValueError, KeyError):
        return None
    try:
        task = TaskInfo.from_json(value)
    except ValueError:
        if local is TaskEventType.SAVE:
            log.error("failed to unmarshal task: %r", value)
        return None
    return TaskEvent(local, task)