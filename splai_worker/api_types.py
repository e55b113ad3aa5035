"""Wire types exchanged between workers, clients and the control plane."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, Optional


def _f(json_name, default=None, *, omitempty=False, pointer=False, item=None, factory=None):
    metadata = {
        "json": json_name,
        "omitempty": omitempty,
        "pointer": pointer,
        "item": item,
    }
    if factory is not None:
        return field(default_factory=factory, metadata=metadata)
    return field(default=default, metadata=metadata)


@dataclass
class SubmitJobRequest:
    type: str = _f("type", "")
    input: str = _f("input", "")
    policy: str = _f("policy", "")
    priority: str = _f("priority", "")
    planner_mode: str = _f("planner_mode", "", omitempty=True)
    install_model_if_missing: bool = _f("install_model_if_missing", False, omitempty=True)
    tenant: str = _f("tenant", "", omitempty=True)
    model: str = _f("model", "", omitempty=True)
    latency_class: str = _f("latency_class", "", omitempty=True)
    reasoning_required: bool = _f("reasoning_required", False, omitempty=True)
    data_classification: str = _f("data_classification", "", omitempty=True)
    network_isolation: str = _f("network_isolation", "", omitempty=True)


@dataclass
class SubmitJobResponse:
    job_id: str = _f("job_id", "")


@dataclass
class PrefetchModelRequest:
    model: str = _f("model", "")
    source: str = _f("source", "", omitempty=True)
    workers: list = _f("workers", omitempty=True, factory=list)
    only_missing: Optional[bool] = _f("only_missing", None, omitempty=True, pointer=True)
    priority: str = _f("priority", "", omitempty=True)
    tenant: str = _f("tenant", "", omitempty=True)


@dataclass
class PrefetchModelResponse:
    job_id: str = _f("job_id", "")
    model: str = _f("model", "")
    source: str = _f("source", "")
    targeted_workers: list = _f("targeted_workers", factory=list)
    scheduled_tasks: int = _f("scheduled_tasks", 0)
    only_missing: bool = _f("only_missing", False)


@dataclass
class JobStatusResponse:
    job_id: str = _f("job_id", "")
    status: str = _f("status", "")
    message: str = _f("message", "", omitempty=True)
    result_artifact_uri: str = _f("result_artifact_uri", "", omitempty=True)
    created_at: str = _f("created_at", "")
    updated_at: str = _f("updated_at", "")


@dataclass
class JobTaskStatus:
    task_id: str = _f("task_id", "")
    type: str = _f("type", "")
    status: str = _f("status", "")
    attempt: int = _f("attempt", 0)
    worker_id: str = _f("worker_id", "", omitempty=True)
    lease_id: str = _f("lease_id", "", omitempty=True)
    lease_expires: str = _f("lease_expires", "", omitempty=True)
    output_uri: str = _f("output_artifact_uri", "", omitempty=True)
    error: str = _f("error", "", omitempty=True)
    created_at: str = _f("created_at", "")
    updated_at: str = _f("updated_at", "")


@dataclass
class JobTasksResponse:
    job_id: str = _f("job_id", "")
    total: int = _f("total", 0)
    returned: int = _f("returned", 0)
    limit: int = _f("limit", 0, omitempty=True)
    offset: int = _f("offset", 0, omitempty=True)
    tasks: list = _f("tasks", item=JobTaskStatus, factory=list)


@dataclass
class CancelJobResponse:
    accepted: bool = _f("accepted", False)


@dataclass
class RegisterWorkerRequest:
    worker_id: str = _f("worker_id", "")
    cpu: int = _f("cpu", 0)
    memory: str = _f("memory", "")
    gpu: bool = _f("gpu", False)
    models: list = _f("models", factory=list)
    tools: list = _f("tools", factory=list)
    backends: list = _f("backends", omitempty=True, factory=list)
    locality: str = _f("locality", "", omitempty=True)


@dataclass
class RegisterWorkerResponse:
    accepted: bool = _f("accepted", False)
    heartbeat_interval_seconds: int = _f("heartbeat_interval_seconds", 0)


@dataclass
class HeartbeatRequest:
    queue_depth: int = _f("queue_depth", 0)
    running_tasks: int = _f("running_tasks", 0)
    cpu_util: float = _f("cpu_utilization", 0.0)
    memory_util: float = _f("memory_utilization", 0.0)
    health: str = _f("health", "")
    timestamp_unix: int = _f("timestamp_unix", 0)


@dataclass
class HeartbeatResponse:
    accepted: bool = _f("accepted", False)


@dataclass
class Assignment:
    job_id: str = _f("job_id", "")
    task_id: str = _f("task_id", "")
    type: str = _f("type", "")
    inputs: dict = _f("inputs", factory=dict)
    attempt: int = _f("attempt", 0)
    lease_id: str = _f("lease_id", "")


@dataclass
class PollAssignmentsResponse:
    assignments: list = _f("assignments", item=Assignment, factory=list)


@dataclass
class ReportTaskResultRequest:
    worker_id: str = _f("worker_id", "")
    job_id: str = _f("job_id", "")
    task_id: str = _f("task_id", "")
    lease_id: str = _f("lease_id", "", omitempty=True)
    idempotency_key: str = _f("idempotency_key", "", omitempty=True)
    status: str = _f("status", "")
    output_artifact_uri: str = _f("output_artifact_uri", "", omitempty=True)
    error: str = _f("error", "", omitempty=True)
    duration_millis: int = _f("duration_millis", 0)


@dataclass
class ReportTaskResultResponse:
    accepted: bool = _f("accepted", False)


@dataclass
class DeadLetterTask:
    job_id: str = _f("job_id", "")
    task_id: str = _f("task_id", "")


@dataclass
class ListDeadLettersResponse:
    tasks: list = _f("tasks", item=DeadLetterTask, factory=list)


@dataclass
class RequeueDeadLettersRequest:
    tasks: list = _f("tasks", item=DeadLetterTask, factory=list)
    dry_run: bool = _f("dry_run", False, omitempty=True)


@dataclass
class RequeueDeadLettersResponse:
    dry_run: bool = _f("dry_run", False, omitempty=True)
    requested: int = _f("requested", 0, omitempty=True)
    requeued: int = _f("requeued", 0)


@dataclass
class AuditEvent:
    id: int = _f("id", 0)
    action: str = _f("action", "")
    actor: str = _f("actor", "")
    tenant: str = _f("tenant", "", omitempty=True)
    remote_addr: str = _f("remote_addr", "", omitempty=True)
    resource: str = _f("resource", "", omitempty=True)
    payload_hash: str = _f("payload_hash", "", omitempty=True)
    prev_hash: str = _f("prev_hash", "", omitempty=True)
    event_hash: str = _f("event_hash", "", omitempty=True)
    requested: int = _f("requested", 0)
    result: str = _f("result", "", omitempty=True)
    details: str = _f("details", "", omitempty=True)
    created_at: str = _f("created_at", "")


@dataclass
class ListAuditEventsResponse:
    returned: int = _f("returned", 0)
    limit: int = _f("limit", 0)
    offset: int = _f("offset", 0)
    events: list = _f("events", item=AuditEvent, factory=list)


def _is_empty(value: Any, pointer: bool) -> bool:
    if value is None:
        return True
    if pointer:
        return False
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    return False


def _encode(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return to_payload(value)
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    return value


def to_payload(obj: Any) -> dict:
    """Return the JSON-ready dict of a wire object, dropping empty optional fields."""
    if not is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"expected a wire object, got {type(obj).__name__}")
    payload = {}
    for f in fields(obj):
        meta = f.metadata
        value = getattr(obj, f.name)
        if meta.get("omitempty") and _is_empty(value, meta.get("pointer", False)):
            continue
        payload[meta.get("json", f.name)] = _encode(value)
    return payload


def from_payload(cls: type, data: Mapping) -> Any:
    """Build a wire object of type ``cls`` from decoded JSON, ignoring unknown keys."""
    if not (isinstance(cls, type) and is_dataclass(cls)):
        raise TypeError(f"{cls!r} is not a wire type")
    if not isinstance(data, Mapping):
        raise TypeError(f"cannot decode {cls.__name__} from {type(data).__name__}")
    kwargs = {}
    for f in fields(cls):
        meta = f.metadata
        key = meta.get("json", f.name)
        if key not in data:
            continue
        value = data[key]
        if value is None and not meta.get("pointer", False):
            continue
        item = meta.get("item")
        if item is not None:
            if not isinstance(value, list):
                raise TypeError(f"field {key!r} of {cls.__name__} must be a list")
            value = [from_payload(item, v) for v in value]
        elif isinstance(value, list):
            value = list(value)
        elif isinstance(value, dict):
            value = dict(value)
        kwargs[f.name] = value
    return cls(**kwargs)


def rfc3339_now() -> str:
    """Current UTC time formatted as RFC 3339 with second precision."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")