"""Adapters for the LLM, embedding and retrieval backends a worker can call."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from splai_worker.config import Config
from splai_worker.httpjson import BackendError, post_json, post_json_with_retry
from splai_worker.inputs import TaskError, first_non_empty
from splai_worker.textsearch import embed_text, retrieve_local_hybrid

_DEFAULT_LLM_MODEL = "llama3-8b-q4"
_DEFAULT_REMOTE_MODEL = "gpt-4o-mini"
_LOCAL_EMBEDDING_VERSION = "local-hash-v1"
_REMOTE_NAMES = ("remote", "remote_api", "remote-api")


def _base(url: str) -> str:
    return (url or "").strip().rstrip("/")


def _bearer(key: str) -> str:
    key = (key or "").strip()
    return f"Bearer {key}" if key else ""


def _field(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, Mapping) else None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _first_choice(out: Any) -> Any:
    choices = _field(out, "choices")
    if isinstance(choices, list) and choices:
        return choices[0]
    return None


def _vector(value: Any) -> Optional[list]:
    if value is None:
        return []
    if not isinstance(value, list):
        return None
    if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in value):
        return None
    return [float(x) for x in value]


def _vectors(value: Any) -> Optional[list]:
    if not isinstance(value, list):
        return None
    out = []
    for item in value:
        vector = _vector(item)
        if vector is None:
            return None
        out.append(vector)
    return out


def _quoted(value: str) -> str:
    return json.dumps(value)


class BackendClient:
    """Calls the inference, embedding and retrieval services named in a Config."""

    def __init__(self, config: Config) -> None:
        self.config = config

    # LLM inference

    def run_llm(self, backend: str, model: str, prompt: str) -> str:
        """Generate text for ``prompt`` with the named backend."""
        name = (backend or "").strip().lower()
        if name in ("", "ollama"):
            return self._ollama_generate(model, prompt)
        if name == "vllm":
            return self._vllm_complete(model, prompt)
        if name in ("llama.cpp", "llamacpp"):
            return self._llamacpp_complete(model, prompt)
        if name in _REMOTE_NAMES:
            return self._remote_chat(model, prompt)
        raise TaskError(f"unsupported llm backend {_quoted(backend)}")

    def _ollama_generate(self, model: str, prompt: str) -> str:
        base = _base(self.config.ollama_base_url)
        if not base:
            raise TaskError("SPLAI_OLLAMA_BASE_URL is required for backend=ollama")
        body = {"model": first_non_empty(model, _DEFAULT_LLM_MODEL), "prompt": prompt, "stream": False}
        text = _text(_field(post_json(base + "/api/generate", "", body), "response")).strip()
        if not text:
            raise BackendError("ollama returned empty response")
        return text

    def _vllm_complete(self, model: str, prompt: str) -> str:
        base = _base(self.config.vllm_base_url)
        if not base:
            raise TaskError("SPLAI_VLLM_BASE_URL is required for backend=vllm")
        body = {"model": first_non_empty(model, _DEFAULT_LLM_MODEL), "prompt": prompt, "max_tokens": 256}
        choice = _first_choice(post_json(base + "/v1/completions", "", body))
        text = _text(_field(choice, "text")).strip()
        if not text:
            raise BackendError("vllm returned empty choices")
        return text

    def _llamacpp_complete(self, model: str, prompt: str) -> str:
        base = _base(self.config.llamacpp_base_url)
        if not base:
            raise TaskError("SPLAI_LLAMACPP_BASE_URL is required for backend=llama.cpp")
        body = {"prompt": prompt, "n_predict": 256, "temperature": 0.2, "model": model}
        text = _text(_field(post_json(base + "/completion", "", body), "content")).strip()
        if not text:
            raise BackendError("llama.cpp returned empty content")
        return text

    def _remote_chat(self, model: str, prompt: str) -> str:
        base = _base(self.config.remote_api_base_url)
        if not base:
            raise TaskError("SPLAI_REMOTE_API_BASE_URL is required for backend=remote_api")
        body = {
            "model": first_non_empty(model, _DEFAULT_REMOTE_MODEL),
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }
        out = post_json(base + "/v1/chat/completions", _bearer(self.config.remote_api_key), body)
        text = _text(_field(_field(_first_choice(out), "message"), "content")).strip()
        if not text:
            raise BackendError("remote api returned empty choices")
        return text

    # Embeddings

    def embed_texts(self, backend: str, model: str, texts: Sequence, dim: int) -> tuple:
        """Return ``(vectors, model_version)`` for ``texts``."""
        if backend in ("", "local"):
            return [embed_text(text, dim) for text in texts], _LOCAL_EMBEDDING_VERSION
        if backend == "ollama":
            return self._embed_ollama(model, texts)
        if backend == "vllm":
            return self._embed_openai_compatible(_base(self.config.vllm_base_url), "", model, texts)
        if backend in _REMOTE_NAMES:
            return self._embed_openai_compatible(
                _base(self.config.remote_api_base_url), _bearer(self.config.remote_api_key), model, texts
            )
        raise TaskError(f"unsupported embedding backend {_quoted(backend)}")

    @property
    def _embedding_attempts(self) -> int:
        return self.config.embedding_http_retries + 1

    def _embed_ollama(self, model: str, texts: Sequence) -> tuple:
        base = _base(self.config.ollama_base_url)
        if not base:
            raise TaskError("SPLAI_OLLAMA_BASE_URL is required for embedding backend=ollama")
        texts = list(texts)
        try:
            batch = post_json_with_retry(
                base + "/api/embed", "", {"model": model, "input": texts}, self._embedding_attempts
            )
        except BackendError:
            batch = None
        vectors = _vectors(_field(batch, "embeddings"))
        if vectors is not None and len(vectors) == len(texts):
            return vectors, first_non_empty(_text(_field(batch, "model")), model)

        out = []
        for text in texts:
            single = post_json_with_retry(
                base + "/api/embeddings", "", {"model": model, "prompt": text}, self._embedding_attempts
            )
            vector = _vector(_field(single, "embedding"))
            if not vector:
                raise BackendError("ollama returned empty embedding")
            out.append(vector)
        return out, model

    def _embed_openai_compatible(self, base_url: str, auth: str, model: str, texts: Sequence) -> tuple:
        if not base_url:
            raise TaskError("embedding base URL is required")
        texts = list(texts)
        out = post_json_with_retry(
            base_url + "/v1/embeddings", auth, {"model": model, "input": texts}, self._embedding_attempts
        )
        data = _field(out, "data")
        if not isinstance(data, list):
            data = []
        if len(data) != len(texts):
            raise BackendError(f"embeddings count mismatch: got {len(data)} want {len(texts)}")
        vectors = []
        for index, item in enumerate(data):
            vector = _vector(_field(item, "embedding"))
            if not vector:
                raise BackendError(f"empty embedding at index {index}")
            vectors.append(vector)
        return vectors, first_non_empty(_text(_field(out, "model")), model)

    # Retrieval

    def retrieve(self, backend: str, query: str, docs: Sequence, filters: Mapping, top_k: int) -> list:
        """Rank ``docs`` against ``query`` locally or through the remote service."""
        if backend in ("", "local"):
            return retrieve_local_hybrid(query, docs, filters, top_k)
        if backend in _REMOTE_NAMES:
            return self._retrieve_remote(query, docs, filters, top_k)
        raise TaskError(f"unsupported retrieval backend {_quoted(backend)}")

    def _retrieve_remote(self, query: str, docs: Sequence, filters: Mapping, top_k: int) -> list:
        base = _base(self.config.retrieval_base_url)
        if not base:
            raise TaskError("SPLAI_RETRIEVAL_BASE_URL is required for retrieval backend=remote_api")
        body = {
            "query": query,
            "documents": [doc.to_dict() if hasattr(doc, "to_dict") else dict(doc) for doc in docs],
            "filters": dict(filters) if filters is not None else None,
            "top_k": top_k,
        }
        out = post_json_with_retry(
            base + "/v1/retrieve",
            _bearer(self.config.retrieval_api_key),
            body,
            self.config.retrieval_http_retries + 1,
        )
        documents = _field(out, "documents")
        if documents is None:
            return []
        if not isinstance(documents, list) or not all(isinstance(d, dict) for d in documents):
            raise BackendError("retrieval backend returned malformed documents")
        return documents