"""Merging of dependency artifacts and inline items into one report."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from splai_worker.inputs import TaskError, first_non_empty, parse_bool

_ARTIFACT_PREFIX = "artifact://"
_DEP_PREFIX = "dep:"
_DEP_SUFFIX = ":output_uri"
_MAX_HIGHLIGHTS = 12


@dataclass
class AggregationSource:
    """One input to an aggregation: an inline item or a dependency's output."""

    source_task_id: str
    payload: dict = field(default_factory=dict)
    artifact_uri: str = ""

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"source_task_id": self.source_task_id}
        if self.artifact_uri:
            out["artifact_uri"] = self.artifact_uri
        out["payload"] = self.payload
        return out


def aggregate(job_id: str, task_id: str, inputs: Mapping, artifact_root: str) -> dict:
    """Run an aggregation task and return the fields it adds to the output."""
    mode = first_non_empty(
        inputs.get("aggregation_mode", ""), inputs.get("mode", ""), "structured_report"
    ).lower()
    sources = load_aggregation_sources(job_id, task_id, inputs, artifact_root)
    if not sources:
        raise TaskError("aggregation requires at least one source (dependency artifact or items_json)")
    result, provenance = reduce_aggregation_sources(sources)
    validate_aggregation_result(result, inputs)
    return {
        "mode": mode,
        "source_count": len(sources),
        "sources": [source.to_dict() for source in sources],
        "result": result,
        "provenance": provenance,
    }


def _dependency_uris(inputs: Mapping) -> dict:
    uris = {}
    for key, value in inputs.items():
        if not key.startswith(_DEP_PREFIX) or not key.endswith(_DEP_SUFFIX):
            continue
        dep_id = key[len(_DEP_PREFIX):]
        if dep_id.endswith(_DEP_SUFFIX):
            dep_id = dep_id[: -len(_DEP_SUFFIX)]
        if not dep_id.strip() or not (value or "").strip():
            continue
        uris[dep_id] = value.strip()
    return uris


def load_aggregation_sources(job_id: str, task_id: str, inputs: Mapping, artifact_root: str) -> list:
    """Collect inline ``items_json`` entries, then dependency artifacts in id order."""
    sources = []
    raw = (inputs.get("items_json") or "").strip()
    if raw:
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TaskError(f"invalid items_json: {exc}") from exc
        if items is None:
            items = []
        if not isinstance(items, list) or not all(i is None or isinstance(i, dict) for i in items):
            raise TaskError("invalid items_json: expected a JSON array of objects")
        sources.extend(
            AggregationSource(source_task_id=f"inline-{index}", payload=dict(item or {}))
            for index, item in enumerate(items, start=1)
        )

    strict = parse_bool(inputs.get("strict_dependencies", ""), True)
    uris = _dependency_uris(inputs)
    for dep_id in sorted(uris):
        uri = uris[dep_id]
        try:
            payload = load_artifact_payload(artifact_root, job_id, task_id, uri)
        except TaskError as exc:
            if strict:
                raise TaskError(f"load dependency {dep_id}: {exc}") from exc
            continue
        sources.append(AggregationSource(source_task_id=dep_id, payload=payload, artifact_uri=uri))
    return sources


def load_artifact_payload(artifact_root: str, job_id: str, task_id: str, uri: str) -> dict:
    """Read the JSON object that a local artifact URI points at."""
    path = artifact_uri_to_local_path(artifact_root, uri)
    if path is None:
        raise TaskError(f"unsupported dependency artifact URI {uri!r} for {job_id}/{task_id}")
    try:
        with open(path, "rb") as handle:
            raw = handle.read()
    except OSError as exc:
        raise TaskError(str(exc)) from exc
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise TaskError(f"invalid artifact json at {path}: {exc}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise TaskError(f"invalid artifact json at {path}: expected an object")
    return payload


def artifact_uri_to_local_path(root: str, uri: str) -> Optional[str]:
    """Map ``artifact://job/task/...`` to its output.json under ``root``; None otherwise."""
    if not uri.startswith(_ARTIFACT_PREFIX):
        return None
    rest = uri[len(_ARTIFACT_PREFIX):]
    if rest.startswith("s3/"):
        return None
    parts = rest.split("/")
    if len(parts) < 3:
        return None
    return os.path.join(root, parts[0], parts[1], "output.json")


def _is_system_key(key: str) -> bool:
    return key.startswith(_DEP_PREFIX) or key.startswith("_")


def _append_unique_any(dst: list, *values: Any) -> list:
    for value in values:
        if not any(values_equal_json(existing, value) for existing in dst):
            dst.append(value)
    return dst


def _append_unique_string(dst: list, *values: str) -> list:
    for value in values:
        value = value.strip()
        if value and value not in dst:
            dst.append(value)
    return dst


def reduce_aggregation_sources(sources: Sequence) -> tuple:
    """Merge payloads first-wins, recording conflicts, provenance and text highlights."""
    merged: dict = {}
    conflicts: dict = {}
    provenance: dict = {}
    highlights: list = []
    for source in sources:
        for key in sorted(source.payload):
            if _is_system_key(key):
                continue
            value = source.payload[key]
            if key not in merged:
                merged[key] = value
            elif not values_equal_json(merged[key], value):
                conflicts[key] = _append_unique_any(conflicts.get(key, []), merged[key], value)
            provenance[key] = _append_unique_string(provenance.get(key, []), source.source_task_id)
            if isinstance(value, str) and value.strip():
                _append_unique_string(highlights, value)
    highlights.sort()
    result = {
        "merged_fields": merged,
        "conflicts": conflicts,
        "highlights": highlights[:_MAX_HIGHLIGHTS],
    }
    return result, provenance


def parse_required_fields(inputs: Mapping) -> list:
    """Required field names from ``required_fields_json`` or comma-separated ``required_fields``."""
    raw = (inputs.get("required_fields_json") or "").strip()
    if raw:
        try:
            fields = json.loads(raw)
        except json.JSONDecodeError:
            fields = False
        if fields is None:
            return []
        if isinstance(fields, list) and all(isinstance(f, str) for f in fields):
            return [f.strip() for f in fields if f.strip()]
    raw = (inputs.get("required_fields") or "").strip()
    if not raw:
        return []
    return [f.strip() for f in raw.split(",") if f.strip()]


def validate_aggregation_result(result: Mapping, inputs: Mapping) -> None:
    """Raise TaskError naming every required field absent from the merged fields."""
    required = parse_required_fields(inputs)
    if not required:
        return
    merged = result.get("merged_fields") or {}
    missing = [key for key in required if key not in merged]
    if missing:
        raise TaskError(f"aggregation missing required fields: {','.join(missing)}")


def _canonical(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def values_equal_json(a: Any, b: Any) -> bool:
    """True if both values encode to the same JSON (numbers compared by value)."""
    try:
        left = json.dumps(_canonical(a), sort_keys=True, separators=(",", ":"))
        right = json.dumps(_canonical(b), sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(a) == str(b)
    return left == right