# cronagent

`cronagent` is a library of building blocks for the agent side of a distributed
cron system. It is made up of the following modules.

- **`cronagent.events`**
  - `TaskInfo` describes a task. `to_json()` and `TaskInfo.from_json()` convert it to and from JSON. `from_json()` raises `ValueError` on bad input. `scheduler_key()` returns `"<project_id>_<task_id>"`, which is the same value as the module-level `scheduler_key(project_id, task_id)`.
  - `task_event_from_remote(event_type, value)` maps an event sent by the center to a local `TaskEvent`:

    | Remote event | Local event |
    | --- | --- |
    | `"put"` | `TaskEventType.SAVE` |
    | `"tmp_schedule"` | `TEMPORARY` |
    | `"delete"` | `DELETE` |
    | `"task_stop"` | `KILL` |

    It returns `None` for any other event type and for a payload that cannot be decoded.
- **`cronagent.executor`**
  - `execute_task(command, shell="/bin/sh", timeout=None, cancel_event=None)` runs `shell -c command` and collects stdout.
    - On POSIX the command runs in its own session.
    - The whole process group is killed when the timeout expires or `cancel_event` is set.
    - It returns an `ExecuteResult` with `start_time`, `end_time`, `output` and `err`.
    - `err` is empty on success. Otherwise it is `"timeout"`, `"canceled"`, or a description of the exit code.
    - In `output`, every complete line is followed by an extra newline.
  - `describe_exit_code(code)` gives a readable text for common shell exit codes.
  - `build_task_log(result, task, tmp_id, project_title)` builds the `TaskLog` record for one run. It raises `ValueError` when the result is missing or when the project title is `None`.
- **`cronagent.plans`**
  - `PlanTable` is a thread-safe table that maps scheduler keys to `TaskSchedulePlan` objects.
  - Setting or removing a plan schedules a debounced recomputation of the per-project digests. You can also call `calc_plan_hash()` directly.
  - `project_task_hash(project_id)` returns two values: the MD5 digest of that project's keys and commands, and the unix time of the last recomputation.
- **`cronagent.scheduler`**
  - `TaskScheduler(cron_parser)` applies `TaskEvent`s to its plan table.
    - `handle_event()` returns a plan that should start at once for temporary and workflow events. For all other events it returns `None`.
    - It also tracks which tasks are executing, through `set_executing()`, `executing()`, `delete_executing()` and `executing_count()`.
    - `check_can_start()` raises `TaskAlreadyRunning` when a task is already executing.
    - `try_schedule(now, start)` calls `start` for every plan that is due and returns the number of seconds until the next plan is due.
  - `handle_command(command, reload)` accepts only `"reload_config"`. For any other command it raises `UnsupportedCommand`.
- **`cronagent.registry`**
  - `StreamManager` keeps the live node streams (`Stream`). It groups them by project and service, and indexes them by `host:port`. Nodes are described by `NodeMeta`.
  - `find_inconsistent_agents(reports)` compares `AgentHashReport` values and returns the addresses of the agents whose plan hash is behind the most recent one.
- **`cronagent.workflow_state`**
  - Provides the JSON records `WorkflowTaskStates`, `WorkflowTaskScheduleRecord` and `PlanState`, and the `TaskStatus` enum.
  - Decoding errors raise `WorkflowStateError`.
- **`cronagent.workflow_store`**
  - Moves workflow tasks and plans through their states:
    - `set_task_starting`
    - `set_task_running`
    - `set_task_not_running`
    - `set_task_finished`
    - `set_plan_running`
    - `get_task_states`
  - It works against any object that has `get(key)` and `put(key, value)`.
  - `set_task_finished` retries a failed task (sets it back to not running) until it has been scheduled `limit` times. After that it marks the task as failed and returns `True`.

## Install

```
pip install .
```

## Example

```python
from datetime import datetime, timedelta

from cronagent.events import TaskEventType, TaskInfo, task_event_from_remote
from cronagent.executor import execute_task
from cronagent.scheduler import TaskScheduler


def every_five_minutes(expression):
    # The caller supplies the cron parser; this one ignores the expression.
    return lambda moment: moment + timedelta(minutes=5)


task = TaskInfo(project_id=1, task_id="backup", name="backup",
                command="echo done", cron="0 */5 * * * *", status=1)
event = task_event_from_remote("put", task.to_json())
assert event.event_type is TaskEventType.SAVE

scheduler = TaskScheduler(every_five_minutes)
scheduler.handle_event(event)
wait = scheduler.try_schedule(datetime.now(), start=lambda plan: print("start", plan.task.name))

result = execute_task("echo hello", shell="/bin/sh", timeout=5)
print(result.output, result.err)
```

The workflow store functions need an object with `get` and `put`:

```python
from cronagent.workflow_store import get_task_states, set_task_starting


class MemoryKV(dict):
    def put(self, key, value):
        self[key] = value


kv = MemoryKV()
set_task_starting(kv, "wf/1/1/backup", 1, "backup", 1, "echo done", "tmp-1")
print(get_task_states(kv, "wf/1/1/backup").current_status)  # starting
```

## What it does not do

This package is a library. It does not include:

- a command-line program or a running agent loop;
- a network server or any connection to a center service;
- distributed locking or leader election;
- a database for storing task logs;
- loading configuration;
- a cron expression parser. `TaskScheduler` takes a parser from the caller.

Streams, key/value stores and log storage are all provided by the code that uses the package.

## Tests

```
pip install .[test]
pytest
```