"""Periodic worker heartbeats carrying load and host utilisation."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
import urllib.error
import urllib.request
from typing import Optional

from splai_worker.api_types import HeartbeatRequest, to_payload

_LOG = logging.getLogger(__name__)
_LOADAVG_PATH = "/proc/loadavg"
_MEMINFO_PATH = "/proc/meminfo"
_DEFAULT_TIMEOUT = 5.0


class HeartbeatError(Exception):
    """The control plane rejected a heartbeat."""

    def __init__(self, status: str) -> None:
        super().__init__(f"heartbeat request failed: {status}")
        self.status = status


def _clamp_percent(value: float) -> float:
    return min(max(value, 0.0), 100.0)


def _load_percent(loadavg_text: str, cpus: int) -> Optional[float]:
    parts = loadavg_text.split()
    if not parts:
        return None
    try:
        load = float(parts[0])
    except ValueError:
        return None
    if cpus <= 0:
        cpus = 1
    return _clamp_percent(load / cpus * 100.0)


def _to_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def _memory_percent(meminfo_text: str) -> Optional[float]:
    total_kb = 0.0
    available_kb = 0.0
    for line in meminfo_text.split("\n"):
        fields = line.split()
        if len(fields) < 2:
            continue
        if fields[0] == "MemTotal:":
            total_kb = _to_float(fields[1])
        elif fields[0] == "MemAvailable:":
            available_kb = _to_float(fields[1])
    if total_kb > 0 and available_kb >= 0:
        return _clamp_percent((total_kb - available_kb) / total_kb * 100.0)
    return None


def _read_text(path: str) -> Optional[str]:
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            return handle.read()
    except OSError:
        return None


def cpu_utilization_percent() -> float:
    """Load average as a percentage of the CPU count, 0 where unavailable."""
    text = _read_text(_LOADAVG_PATH)
    if text is None:
        return 0.0
    pct = _load_percent(text, os.cpu_count() or 1)
    return 0.0 if pct is None else pct


def memory_utilization_percent() -> float:
    """Share of host memory in use, 0 where unavailable."""
    text = _read_text(_MEMINFO_PATH)
    if text is None:
        return 0.0
    pct = _memory_percent(text)
    return 0.0 if pct is None else pct


class HeartbeatClient:
    """Sends the worker's heartbeat to the control plane at a fixed interval."""

    def __init__(
        self,
        base_url: str,
        worker_id: str,
        api_token: str,
        interval: float,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.worker_id = worker_id
        self.api_token = (api_token or "").strip()
        self.interval = interval
        self.timeout = timeout
        self._lock = threading.Lock()
        self._running_tasks = 0
        self._queue_depth = 0

    def set_stats(self, running: int, queue: int) -> None:
        """Record the numbers of running and queued tasks reported next."""
        with self._lock:
            self._running_tasks = running
            self._queue_depth = queue

    def send(self) -> None:
        """Send one heartbeat; raise HeartbeatError on a non-success status."""
        with self._lock:
            running, queue = self._running_tasks, self._queue_depth
        payload = HeartbeatRequest(
            queue_depth=queue,
            running_tasks=running,
            cpu_util=cpu_utilization_percent(),
            memory_util=memory_utilization_percent(),
            health="healthy",
            timestamp_unix=int(time.time()),
        )
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["X-SPLAI-Token"] = self.api_token
        url = f"{self.base_url}/v1/workers/{self.worker_id}/heartbeat"
        request = urllib.request.Request(
            url, data=json.dumps(to_payload(payload)).encode("utf-8"), headers=headers, method="POST"
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                response.read()
                if response.status >= 300:
                    raise HeartbeatError(f"{response.status} {response.reason}")
        except urllib.error.HTTPError as exc:
            raise HeartbeatError(f"{exc.code} {exc.reason}") from exc

    def start(self, stop_event: threading.Event) -> None:
        """Send heartbeats every interval until ``stop_event`` is set."""
        if self.interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        while not stop_event.wait(self.interval):
            try:
                self.send()
            except (HeartbeatError, OSError, ValueError) as exc:
                _LOG.warning("heartbeat failed: %s", exc)