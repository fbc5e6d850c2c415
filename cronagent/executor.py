"""Running task commands in a shell and turning results into log records."""

from __future__ import annotations

import json
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import IO

from cronagent.events import TaskInfo

_POSIX = os.name == "posix"
_POLL_INTERVAL = 0.05
_READER_GRACE = 1.0

_EXIT_DESCRIPTIONS = {
    2: "terminal interrupt",
    9: "process terminated",
    126: "unexecutable command",
    127: "command not found",
    128: "invalid exit parameter",
    130: "sig exit",
    255: "error exit code",
}


@dataclass
class ExecuteResult:
    """Outcome of one command execution; ``err`` is empty on success."""

    start_time: datetime
    end_time: datetime
    output: str = ""
    err: str = ""


@dataclass
class TaskLog:
    """A task execution record ready to be stored."""

    name: str
    project: str
    project_id: int
    task_id: str
    result: str
    start_time: int
    end_time: int
    command: str
    with_error: int
    client_ip: str
    tmp_id: str


def describe_exit_code(code: int) -> str:
    """Human readable description of a shell exit code."""
    if code == 1:
        return "exit status 1"
    return _EXIT_DESCRIPTIONS.get(code, f"exit code: {code}")


def _exit_error_text(returncode: int) -> str:
    if returncode < 0:
        name = signal.strsignal(-returncode) or f"signal {-returncode}"
        return f"signal: {name.lower()}"
    return f"exit status {returncode}"


def _collect(stream: IO[bytes], lines: list[str]) -> None:
    # Only complete lines are kept, each followed by an extra newline.
    try:
        for raw in iter(stream.readline, b""):
            if raw.endswith(b"\n"):
                lines.append(raw.decode("utf-8", errors="replace") + "\n")
    except (OSError, ValueError):
        pass


def _kill(proc: subprocess.Popen) -> None:
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass


def execute_task(
    command: str,
    shell: str = "/bin/sh",
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> ExecuteResult:
    """Run ``command`` with ``shell -c``, stopping it on timeout or cancellation."""
    start = datetime.now()
    try:
        proc = subprocess.Popen(
            [shell, "-c", command],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            start_new_session=_POSIX,
        )
    except OSError as exc:
        return ExecuteResult(start_time=start, end_time=datetime.now(), err=str(exc))

    lines: list[str] = []
    reader = threading.Thread(target=_collect, args=(proc.stdout, lines), daemon=True)
    reader.start()

    deadline = None if timeout is None else time.monotonic() + timeout
    stop_reason = ""
    while True:
        try:
            returncode = proc.wait(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass
        if cancel_event is not None and cancel_event.is_set():
            stop_reason = "canceled"
        elif deadline is not None and time.monotonic() >= deadline:
            stop_reason = "timeout"
        else:
            continue
        _kill(proc)
        returncode = proc.wait()
        break

    reader.join(_READER_GRACE)
    if not reader.is_alive() and proc.stdout is not None:
        proc.stdout.close()

    err = ""
    if returncode != 0:
        if not stop_reason:
            if cancel_event is not None and cancel_event.is_set():
                stop_reason = "canceled"
            elif deadline is not None and time.monotonic() >= deadline:
                stop_reason = "timeout"
        if stop_reason:
            err = stop_reason
        else:
            code = -1 if returncode < 0 else returncode
            err = describe_exit_code(code) + ", " + _exit_error_text(returncode)

    return ExecuteResult(start_time=start, end_time=datetime.now(), output="".join(list(lines)), err=err)


def build_task_log(
    result: ExecuteResult | None,
    task: TaskInfo,
    tmp_id: str,
    project_title: str | None,
) -> TaskLog:
    """Build the stored log record for an execution of ``task``."""
    if result is None:
        raise ValueError("failed to report task result, empty result")
    if project_title is None:
        raise ValueError("task result report error, project not exist!")

    payload = {"result": result.output}
    with_error = 0
    if result.err:
        payload["system_error"] = result.err
        with_error = 1

    return TaskLog(
        name=task.name,
        project=project_title,
        project_id=task.project_id,
        task_id=task.task_id,
        result=json.dumps(payload, ensure_ascii=False),
        start_time=int(result.start_time.timestamp()),
        end_time=int(result.end_time.timestamp()),
        command=task.command,
        with_error=with_error,
        client_ip=task.client_ip,
        tmp_id=tmp_id,
    )