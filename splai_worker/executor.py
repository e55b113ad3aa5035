"""Execution of assigned tasks and storage of their output artifacts."""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from splai_worker.aggregation import aggregate
from splai_worker.api_types import rfc3339_now
from splai_worker.backends import BackendClient
from splai_worker.config import Config
from splai_worker.inputs import (
    TaskError,
    first_non_empty,
    parse_bool,
    parse_embedding_inputs,
    parse_positive_int,
    validate_vector,
)
from splai_worker.objectstore import DEFAULT_BUCKET, upload_to_minio
from splai_worker.textsearch import decode_documents, parse_metadata_filters
from splai_worker.tooling import ensure_model_installed, run_sandboxed_command

_DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
_DEFAULT_EMBEDDING_DIM = 384
_DEFAULT_TOP_K = 5


@dataclass
class Task:
    """A unit of work handed to the executor."""

    job_id: str
    task_id: str
    type: str
    input: dict = field(default_factory=dict)


class Executor:
    """Runs tasks of the supported types and writes each result as output.json."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._backends = BackendClient(config)
        self._handlers: dict[str, Callable[[Task], dict]] = {
            "llm_inference": self._llm_inference,
            "model_download": self._model_download,
            "tool_execution": self._tool_execution,
            "embedding": self._embedding,
            "retrieval": self._retrieval,
            "aggregation": self._aggregation,
        }

    def run(self, task: Task) -> str:
        """Execute ``task``, store its output and return the artifact URI."""
        handler = self._handlers.get((task.type or "").strip().lower())
        if handler is None:
            raise TaskError(f"unsupported task type {json.dumps(task.type)}")
        output: dict[str, Any] = {
            "job_id": task.job_id,
            "task_id": task.task_id,
            "type": task.type,
            "created_at": rfc3339_now(),
        }
        output.update(handler(task))
        return self._store(task, output)

    def _store(self, task: Task, output: dict) -> str:
        artifact_path = os.path.join(self.config.artifact_root, task.job_id, task.task_id, "output.json")
        os.makedirs(os.path.dirname(artifact_path), mode=0o755, exist_ok=True)
        with open(artifact_path, "w", encoding="utf-8") as handle:
            json.dump(output, handle, indent=2, sort_keys=True, ensure_ascii=False)
        if (self.config.artifact_backend or "").strip().lower() == "minio":
            upload_to_minio(self.config, artifact_path, task.job_id, task.task_id)
            bucket = (self.config.minio_bucket or "").strip() or DEFAULT_BUCKET
            return f"artifact://s3/{bucket}/{task.job_id}/{task.task_id}/output.json"
        return f"artifact://{task.job_id}/{task.task_id}/output.json"

    @staticmethod
    def _inputs(task: Task) -> Mapping:
        return task.input or {}

    def _llm_inference(self, task: Task) -> dict:
        inputs = self._inputs(task)
        out: dict[str, Any] = {}
        model = first_non_empty(inputs.get("model", ""))
        if parse_bool(inputs.get("_install_model_if_missing", ""), False) and model:
            source = first_non_empty(inputs.get("model_source", ""), "huggingface")
            try:
                path, installed_now = ensure_model_installed(self.config, model, source, True)
            except TaskError as exc:
                raise TaskError(f"install model {model}: {exc}") from exc
            out.update(model=model, model_path=path, model_installed_now=installed_now)
        prompt = first_non_empty(inputs.get("prompt", ""), inputs.get("text", ""), inputs.get("op", ""))
        backend = first_non_empty(inputs.get("backend", ""), "ollama").lower()
        out["backend"] = backend
        out["text"] = self._backends.run_llm(backend, model, prompt)
        return out

    def _model_download(self, task: Task) -> dict:
        inputs = self._inputs(task)
        model = first_non_empty(inputs.get("model", ""))
        if not model:
            raise TaskError("model_download requires input.model")
        source = first_non_empty(inputs.get("source", ""), "huggingface")
        only_if_missing = parse_bool(inputs.get("only_if_missing", ""), True)
        path, installed_now = ensure_model_installed(self.config, model, source, only_if_missing)
        return {
            "model": model,
            "source": source,
            "only_if_missing": only_if_missing,
            "model_path": path,
            "model_installed_now": installed_now,
            "result": "ok",
        }

    def _tool_execution(self, task: Task) -> dict:
        inputs = self._inputs(task)
        out: dict[str, Any] = {
            "tool": first_non_empty(inputs.get("op", ""), "noop"),
            "sandboxed": True,
        }
        command = first_non_empty(inputs.get("command", ""), inputs.get("script", ""))
        if command:
            result = run_sandboxed_command(self.config.artifact_root, task.job_id, task.task_id, command)
            out["stdout"] = result.stdout
            out["stderr"] = result.stderr
        out["result"] = "ok"
        return out

    def _embedding(self, task: Task) -> dict:
        inputs = self._inputs(task)
        texts = parse_embedding_inputs(inputs)
        if not texts:
            raise TaskError("embedding requires non-empty text/prompt")
        backend = first_non_empty(
            inputs.get("embedding_backend", ""),
            inputs.get("backend", ""),
            self.config.embedding_backend,
            "local",
        ).lower()
        model = first_non_empty(
            inputs.get("embedding_model", ""),
            inputs.get("model", ""),
            self.config.embedding_model,
            _DEFAULT_EMBEDDING_MODEL,
        )
        dim = parse_positive_int(
            first_non_empty(inputs.get("embedding_dimension", ""), inputs.get("dimension", "")),
            self.config.embedding_dimension,
        )
        if dim <= 0:
            dim = _DEFAULT_EMBEDDING_DIM
        vectors, model_version = self._backends.embed_texts(backend, model, texts, dim)
        for index, vector in enumerate(vectors):
            if not vector:
                raise TaskError(f"embedding backend returned empty vector at index {index}")
            try:
                validate_vector(vector)
            except TaskError as exc:
                raise TaskError(f"invalid vector at index {index}: {exc}") from exc
        out: dict[str, Any] = {
            "backend": backend,
            "model": model,
            "model_version": model_version,
            "dimension": len(vectors[0]) if vectors else 0,
            "text_count": len(texts),
            "vectors": vectors,
        }
        if len(vectors) == 1:
            out["vector"] = vectors[0]
        return out

    def _retrieval(self, task: Task) -> dict:
        inputs = self._inputs(task)
        query = first_non_empty(inputs.get("query", ""), inputs.get("text", ""), inputs.get("prompt", ""))
        docs = decode_documents(inputs)
        top_k = parse_positive_int(first_non_empty(inputs.get("top_k", "")), _DEFAULT_TOP_K)
        backend = first_non_empty(
            inputs.get("retrieval_backend", ""),
            inputs.get("backend", ""),
            self.config.retrieval_backend,
            "local",
        ).lower()
        filters = parse_metadata_filters(inputs)
        hits = self._backends.retrieve(backend, query, docs, filters, top_k)
        return {
            "backend": backend,
            "top_k": top_k,
            "filters": filters,
            "documents": hits,
            "query": query,
        }

    def _aggregation(self, task: Task) -> dict:
        return aggregate(task.job_id, task.task_id, self._inputs(task), self.config.artifact_root)