"""The worker loop: poll for assignments, execute them and report results."""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Optional

from splai_worker.api_types import (
    PollAssignmentsResponse,
    ReportTaskResultRequest,
    from_payload,
    to_payload,
)
from splai_worker.config import Config
from splai_worker.executor import Executor, Task
from splai_worker.heartbeat import HeartbeatClient

_LOG = logging.getLogger(__name__)
_TIMEOUT = 10.0


class ControlPlaneError(Exception):
    """The control plane answered with a non-success status."""

    def __init__(self, status: str) -> None:
        super().__init__(f"control-plane request failed: {status}")
        self.status = status


def build_idempotency_key(worker_id: str, job_id: str, task_id: str, attempt: int) -> str:
    """Key identifying one attempt of a task by one worker."""
    return f"{worker_id}:{job_id}:{task_id}:{attempt}"


class Runtime:
    """Ties the executor and the heartbeat to the control plane."""

    def __init__(
        self,
        config: Config,
        executor: Executor,
        heartbeat: HeartbeatClient,
        timeout: float = _TIMEOUT,
    ) -> None:
        self.config = config
        self.executor = executor
        self.heartbeat = heartbeat
        self.timeout = timeout

    @property
    def _base(self) -> str:
        return self.config.control_plane_base_url.rstrip("/")

    def _call(self, method: str, url: str, body: Optional[Any] = None) -> bytes:
        headers = {}
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(body).encode("utf-8")
        token = (self.config.api_token or "").strip()
        if token:
            headers["X-SPLAI-Token"] = token
        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                raw = response.read()
                if response.status >= 300:
                    raise ControlPlaneError(f"{response.status} {response.reason}")
                return raw
        except urllib.error.HTTPError as exc:
            raise ControlPlaneError(f"{exc.code} {exc.reason}") from exc

    def run(self, stop_event: threading.Event) -> None:
        """Poll every poll interval until ``stop_event`` is set."""
        beat = threading.Thread(target=self.heartbeat.start, args=(stop_event,), daemon=True)
        beat.start()
        try:
            while not stop_event.wait(self.config.poll_interval):
                try:
                    self.poll_and_run()
                except (ControlPlaneError, OSError, ValueError, TypeError) as exc:
                    _LOG.warning("poll failed: %s", exc)
        finally:
            beat.join()

    def poll_and_run(self) -> list:
        """Fetch assignments, execute them in turn and return the final reports."""
        url = (
            f"{self._base}/v1/workers/{self.config.worker_id}/assignments"
            f"?max_tasks={self.config.max_parallel_tasks}"
        )
        data = json.loads(self._call("GET", url) or b"null")
        result = from_payload(PollAssignmentsResponse, data or {})

        self.heartbeat.set_stats(0, len(result.assignments))
        reports = []
        for assignment in result.assignments:
            self.heartbeat.set_stats(1, 0)
            key = build_idempotency_key(
                self.config.worker_id, assignment.job_id, assignment.task_id, assignment.attempt
            )
            try:
                self.report(ReportTaskResultRequest(
                    worker_id=self.config.worker_id,
                    job_id=assignment.job_id,
                    task_id=assignment.task_id,
                    lease_id=assignment.lease_id,
                    idempotency_key=key + ":running",
                    status="Running",
                ))
            except (ControlPlaneError, OSError):
                pass

            started = time.monotonic()
            task = Task(
                job_id=assignment.job_id,
                task_id=assignment.task_id,
                type=assignment.type,
                input=dict(assignment.inputs or {}),
            )
            artifact_uri = ""
            error: Optional[Exception] = None
            try:
                artifact_uri = self.executor.run(task)
            except Exception as exc:  # any task failure is reported, never fatal
                error = exc
            duration_ms = int((time.monotonic() - started) * 1000)

            final = ReportTaskResultRequest(
                worker_id=self.config.worker_id,
                job_id=assignment.job_id,
                task_id=assignment.task_id,
                lease_id=assignment.lease_id,
                idempotency_key=key,
                status="Failed" if error is not None else "Completed",
                output_artifact_uri="" if error is not None else artifact_uri,
                error=str(error) if error is not None else "",
                duration_millis=duration_ms,
            )
            try:
                self.report(final)
            except (ControlPlaneError, OSError) as exc:
                _LOG.warning(
                    "report failed job=%s task=%s: %s", assignment.job_id, assignment.task_id, exc
                )
            reports.append(final)
            self.heartbeat.set_stats(0, 0)
        return reports

    def report(self, payload: ReportTaskResultRequest) -> None:
        """Send a task status report to the control plane."""
        self._call("POST", f"{self._base}/v1/tasks/report", to_payload(payload))