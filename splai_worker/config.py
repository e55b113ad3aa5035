"""Worker configuration read from the environment."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

_INT_RE = re.compile(r"[+-]?[0-9]+")
_TRUE = {"1", "true", "TRUE", "yes", "YES"}
_FALSE = {"0", "false", "FALSE", "no", "NO"}

# Credential fields and the environment variables they are read from; all
# default to empty.
_CREDENTIAL_ENV = (
    ("api_token", "SPLAI_API_TOKEN"),
    ("minio_access_key", "SPLAI_MINIO_ACCESS_KEY"),
    ("minio_secret_key", "SPLAI_MINIO_SECRET_KEY"),
    ("remote_api_key", "SPLAI_REMOTE_API_KEY"),
    ("retrieval_api_key", "SPLAI_RETRIEVAL_API_KEY"),
)


@dataclass(frozen=True)
class Config:
    """Worker settings; intervals are in seconds."""

    worker_id: str = ""
    control_plane_base_url: str = ""
    api_token: str = ""
    max_parallel_tasks: int = 0
    heartbeat_interval: float = 0.0
    poll_interval: float = 0.0
    artifact_root: str = ""
    model_cache_dir: str = ""
    artifact_backend: str = ""
    minio_endpoint: str = ""
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_bucket: str = ""
    minio_use_ssl: bool = False
    ollama_base_url: str = ""
    vllm_base_url: str = ""
    llamacpp_base_url: str = ""
    remote_api_base_url: str = ""
    remote_api_key: str = ""
    worker_backends: str = ""
    embedding_backend: str = ""
    embedding_model: str = ""
    embedding_dimension: int = 0
    embedding_http_retries: int = 0
    retrieval_backend: str = ""
    retrieval_base_url: str = ""
    retrieval_api_key: str = ""
    retrieval_http_retries: int = 0


def _getenv(env: Mapping, key: str, fallback: str) -> str:
    value = env.get(key, "")
    return value if value else fallback


def _getenv_int(env: Mapping, key: str, fallback: int) -> int:
    value = env.get(key, "")
    if not value or not _INT_RE.fullmatch(value):
        return fallback
    return int(value)


def _getenv_bool(env: Mapping, key: str, fallback: bool) -> bool:
    value = env.get(key, "")
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return fallback


def from_env(environ: Optional[Mapping] = None) -> Config:
    """Build a Config from ``environ`` (the process environment by default)."""
    env = os.environ if environ is None else environ
    artifact_root = _getenv(env, "SPLAI_ARTIFACT_ROOT", "/tmp/splai-artifacts")
    credentials = {field: _getenv(env, var, "") for field, var in _CREDENTIAL_ENV}
    return Config(
        worker_id=_getenv(env, "SPLAI_WORKER_ID", "worker-local"),
        control_plane_base_url=_getenv(env, "SPLAI_CONTROL_PLANE_URL", "http://localhost:8080"),
        max_parallel_tasks=_getenv_int(env, "SPLAI_MAX_PARALLEL_TASKS", 2),
        heartbeat_interval=float(_getenv_int(env, "SPLAI_HEARTBEAT_SECONDS", 5)),
        poll_interval=_getenv_int(env, "SPLAI_POLL_MILLIS", 1500) / 1000.0,
        artifact_root=artifact_root,
        model_cache_dir=_getenv(env, "SPLAI_MODEL_CACHE_DIR", artifact_root + "/models"),
        artifact_backend=_getenv(env, "SPLAI_ARTIFACT_BACKEND", "local"),
        minio_endpoint=_getenv(env, "SPLAI_MINIO_ENDPOINT", ""),
        minio_bucket=_getenv(env, "SPLAI_MINIO_BUCKET", "splai-artifacts"),
        minio_use_ssl=_getenv_bool(env, "SPLAI_MINIO_USE_SSL", False),
        ollama_base_url=_getenv(env, "SPLAI_OLLAMA_BASE_URL", ""),
        vllm_base_url=_getenv(env, "SPLAI_VLLM_BASE_URL", ""),
        llamacpp_base_url=_getenv(env, "SPLAI_LLAMACPP_BASE_URL", ""),
        remote_api_base_url=_getenv(env, "SPLAI_REMOTE_API_BASE_URL", ""),
        worker_backends=_getenv(env, "SPLAI_WORKER_BACKENDS", ""),
        embedding_backend=_getenv(env, "SPLAI_EMBEDDING_BACKEND", "local"),
        embedding_model=_getenv(env, "SPLAI_EMBEDDING_MODEL", "nomic-embed-text"),
        embedding_dimension=_getenv_int(env, "SPLAI_EMBEDDING_DIMENSION", 384),
        embedding_http_retries=_getenv_int(env, "SPLAI_EMBEDDING_HTTP_RETRIES", 2),
        retrieval_backend=_getenv(env, "SPLAI_RETRIEVAL_BACKEND", "local"),
        retrieval_base_url=_getenv(env, "SPLAI_RETRIEVAL_BASE_URL", ""),
        retrieval_http_retries=_getenv_int(env, "SPLAI_RETRIEVAL_HTTP_RETRIES", 2),
        **credentials,
    )