"""Bookkeeping of live agent streams and detection of diverging agents."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Protocol


class EventSender(Protocol):
    def send(self, event: Any) -> None: ...


@dataclass(frozen=True)
class NodeMeta:
    """Registration data of one service node."""

    region: str
    system: int
    service_name: str
    host: str
    port: int
    register_time: int = 0  # nanoseconds since the epoch


@dataclass
class Stream:
    """An open event stream towards one registered node."""

    stream: EventSender
    cancel_func: Callable[[], None] | None = None
    create_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    host: str = ""
    port: int = 0
    service_name: str = ""
    region: str = ""
    system: int = 0

    def cancel(self) -> None:
        """Ask the owner of the stream to close it."""
        if self.cancel_func is not None:
            self.cancel_func()

    def send(self, event: Any) -> None:
        """Push an event to the node."""
        self.stream.send(event)


def _group_key(system: int, service_name: str) -> str:
    return f"{system}/{service_name}"


def _service_key(info: NodeMeta) -> str:
    return (
        f"{info.region}_{info.system}_{info.service_name}_"
        f"{info.host}_{info.port}_{info.register_time}"
    )


class StreamManager:
    """Thread-safe registry of streams grouped by project and service."""

    def __init__(self) -> None:
        self._alive: dict[str, dict[str, Stream]] = {}
        self._host_index: dict[str, tuple[str, str]] = {}
        self._lock = threading.RLock()

    def save_stream(
        self,
        info: NodeMeta,
        stream: EventSender,
        cancel_func: Callable[[], None] | None,
    ) -> Stream:
        """Register the stream of a node, replacing any earlier one with the same identity."""
        group = _group_key(info.system, info.service_name)
        key = _service_key(info)
        saved = Stream(
            stream=stream,
            cancel_func=cancel_func,
            create_time=datetime.fromtimestamp(info.register_time / 1e9, tz=timezone.utc),
            host=info.host,
            port=int(info.port),
            service_name=info.service_name,
            region=info.region,
            system=info.system,
        )
        with self._lock:
            self._alive.setdefault(group, {})[key] = saved
            self._host_index[f"{info.host}:{info.port}"] = (group, key)
        return saved

    def remove_stream(self, info: NodeMeta) -> None:
        """Forget the stream of a node; empty groups are dropped."""
        group = _group_key(info.system, info.service_name)
        with self._lock:
            streams = self._alive.get(group)
            if streams is None:
                return
            streams.pop(_service_key(info), None)
            if not streams:
                del self._alive[group]

    def get_stream_by_host(self, host: str) -> Stream | None:
        """Look up a stream by ``host:port``."""
        with self._lock:
            index = self._host_index.get(host)
            if index is None:
                return None
            group, key = index
            return self._alive.get(group, {}).get(key)

    def get_streams(self, system: int, service_name: str) -> dict[str, Stream]:
        """All streams of a service in a project; empty when there are none."""
        with self._lock:
            return dict(self._alive.get(_group_key(system, service_name), {}))


@dataclass(frozen=True)
class AgentHashReport:
    """Plan hash reported by one agent for one project."""

    addr: str
    hash: str
    latest_update_time: int


def find_inconsistent_agents(reports: Iterable[AgentHashReport]) -> list[str]:
    """Addresses of agents whose plan hash lags behind the most recent one seen."""
    reports = list(reports)
    if len(reports) <= 1:
        return []

    to_remove: list[str] = []
    current_hash: str | None = None
    current_time = 0
    before: list[str] = []
    for report in reports:
        if current_hash is None:
            current_hash = report.hash
            current_time = report.latest_update_time
            before = [report.addr]
        elif report.hash != current_hash:
            if report.latest_update_time <= current_time:
                to_remove.append(report.addr)
                before.append(report.addr)
            else:
                current_time = report.latest_update_time
                current_hash = report.hash
                to_remove.extend(before)
                before = []
    return to_remove