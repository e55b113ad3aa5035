"""Local text embedding, document decoding and hybrid retrieval."""

from __future__ import annotations

import hashlib
import json
import math
import unicodedata
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any

from splai_worker.inputs import TaskError

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619
_LOCAL_DIM = 128


@dataclass
class RetrievalDoc:
    """A document that retrieval can rank."""

    id: str = ""
    text: str = ""
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"id": self.id, "text": self.text}
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


def _is_word_char(ch: str) -> bool:
    return ch.isalpha() or unicodedata.category(ch) == "Nd"


def tokenize(text: str) -> list:
    """Lower-case ``text`` and split it into runs of letters and digits."""
    return ["".join(run) for keep, run in groupby(text.lower(), key=_is_word_char) if keep]


def fnv32(text: str) -> int:
    """32-bit FNV-1a hash of the UTF-8 bytes of ``text``."""
    h = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def _normalize_l2(vector: list) -> list:
    total = sum(x * x for x in vector)
    if total == 0:
        return vector
    norm = math.sqrt(total)
    return [x / norm for x in vector]


def embed_text(text: str, dim: int = _LOCAL_DIM) -> list:
    """Hashed term-frequency vector of ``text``, L2-normalised."""
    if dim <= 0:
        dim = _LOCAL_DIM
    vector = [0.0] * dim
    tokens = tokenize(text)
    if not tokens:
        return vector
    total = float(len(tokens))
    for token, count in Counter(tokens).items():
        vector[fnv32(token) % dim] += count / total
    return _normalize_l2(vector)


def cosine_similarity(a: Sequence, b: Sequence) -> float:
    """Dot product of two already normalised vectors; 0 if they do not match."""
    if not a or len(a) != len(b):
        return 0.0
    return float(sum(x * y for x, y in zip(a, b)))


def token_overlap_score(query_tokens: Sequence, doc_tokens: Sequence) -> float:
    """Jaccard similarity of the two token sets."""
    if not query_tokens or not doc_tokens:
        return 0.0
    q, d = set(query_tokens), set(doc_tokens)
    union = len(q | d)
    if union <= 0:
        return 0.0
    return len(q & d) / union


def deterministic_vector(seed: str, n: int) -> list:
    """A vector of ``n`` values in [0, 1] derived from the SHA-1 of ``seed``."""
    if n <= 0:
        n = 8
    digest = hashlib.sha1(seed.encode("utf-8")).hexdigest()
    size = len(digest)
    out = []
    for i in range(n):
        pos = (i * 2) % size
        out.append(int(digest[pos:pos + 2], 16) / 255.0)
    return out


def _string_field(item: Mapping, key: str) -> str:
    value = item.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TaskError(f"invalid documents_json: field {key!r} must be a string")
    return value


def decode_documents(inputs: Mapping) -> list:
    """Read documents from ``documents_json`` or newline-separated ``documents``."""
    raw = (inputs.get("documents_json") or "").strip()
    if raw:
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TaskError(f"invalid documents_json: {exc}") from exc
        if items is None:
            return []
        if not isinstance(items, list):
            raise TaskError("invalid documents_json: expected a JSON array")
        docs = []
        for index, item in enumerate(items, start=1):
            if item is None:
                continue
            if not isinstance(item, dict):
                raise TaskError("invalid documents_json: each document must be an object")
            text = _string_field(item, "text")
            doc_id = _string_field(item, "id")
            metadata = item.get("metadata")
            if metadata is not None and not isinstance(metadata, dict):
                raise TaskError("invalid documents_json: metadata must be an object")
            if not text.strip():
                continue
            docs.append(RetrievalDoc(
                id=doc_id if doc_id.strip() else f"doc-{index}",
                text=text,
                metadata=dict(metadata or {}),
            ))
        return docs
    raw = (inputs.get("documents") or "").strip()
    if raw:
        return [
            RetrievalDoc(id=f"doc-{index}", text=line.strip(), metadata={})
            for index, line in enumerate(raw.split("\n"), start=1)
            if line.strip()
        ]
    return []


def parse_metadata_filters(inputs: Mapping) -> dict:
    """Filters from ``filters_json``, or from the tenant and data_classification inputs."""
    raw = (inputs.get("filters_json") or "").strip()
    if raw:
        try:
            filters = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TaskError(f"invalid filters_json: {exc}") from exc
        if filters is None:
            return {}
        if not isinstance(filters, dict) or not all(isinstance(v, str) for v in filters.values()):
            raise TaskError("invalid filters_json: expected an object of strings")
        return filters
    out = {}
    for key in ("tenant", "data_classification"):
        value = (inputs.get(key) or "").strip()
        if value:
            out[key] = value
    return out


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return str(value)


def matches_filters(metadata: Mapping, filters: Mapping) -> bool:
    """True if every filter key is in ``metadata`` with a case-insensitively equal value."""
    for key, want in filters.items():
        if key not in metadata:
            return False
        got = _format_value(metadata[key]).strip()
        if got.casefold() != str(want).strip().casefold():
            return False
    return True


def filter_docs_by_metadata(docs: Sequence, filters: Mapping) -> list:
    if not filters:
        return list(docs)
    return [doc for doc in docs if matches_filters(doc.metadata, filters)]


def retrieve_local_hybrid(query: str, docs: Sequence, filters: Mapping, top_k: int) -> list:
    """Rank documents by 0.7 x vector similarity + 0.3 x token overlap."""
    if top_k <= 0:
        top_k = 5
    query = query.strip()
    if not docs or not query:
        return []
    candidates = filter_docs_by_metadata(docs, filters)
    if not candidates:
        return []
    query_vector = embed_text(query, _LOCAL_DIM)
    query_tokens = tokenize(query)
    hits = []
    for doc in candidates:
        vector_score = cosine_similarity(query_vector, embed_text(doc.text, _LOCAL_DIM))
        lexical_score = token_overlap_score(query_tokens, tokenize(doc.text))
        hits.append({
            "id": doc.id,
            "score": 0.7 * vector_score + 0.3 * lexical_score,
            "vector_score": vector_score,
            "lexical_score": lexical_score,
            "text": doc.text,
            "metadata": doc.metadata,
        })
    hits.sort(key=lambda hit: hit["score"], reverse=True)
    return hits[:top_k]