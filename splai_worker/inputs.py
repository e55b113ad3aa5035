"""Parsing helpers for the string inputs a task carries."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence

_INT_RE = re.compile(r"[+-]?[0-9]+")
_BOOL_VALUES = {
    "1": True, "t": True, "T": True, "TRUE": True, "true": True, "True": True,
    "0": False, "f": False, "F": False, "FALSE": False, "false": False, "False": False,
}


class TaskError(Exception):
    """A task could not be carried out with the inputs it was given."""


def first_non_empty(*args: str) -> str:
    """Return the first argument that is not blank, stripped; otherwise ''."""
    for value in args:
        if value and value.strip():
            return value.strip()
    return ""


def parse_bool(value: str, fallback: bool) -> bool:
    text = (value or "").strip()
    return _BOOL_VALUES.get(text, fallback) if text else fallback


def parse_positive_int(value: str, fallback: int) -> int:
    text = (value or "").strip()
    if not text or not _INT_RE.fullmatch(text):
        return fallback
    number = int(text)
    return number if number > 0 else fallback


def parse_embedding_inputs(inputs: Mapping) -> list:
    """Collect the texts to embed from ``texts_json`` or a single text field."""
    raw = (inputs.get("texts_json") or "").strip()
    if raw:
        try:
            texts = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TaskError(f"invalid texts_json: {exc}") from exc
        if texts is None:
            return []
        if not isinstance(texts, list) or not all(isinstance(t, str) for t in texts):
            raise TaskError("invalid texts_json: expected a JSON array of strings")
        return [t.strip() for t in texts if t.strip()]
    text = first_non_empty(inputs.get("text", ""), inputs.get("prompt", ""), inputs.get("op", ""))
    return [text] if text else []


def validate_vector(vector: Sequence) -> None:
    """Raise TaskError if the vector holds NaN or an infinity."""
    for index, value in enumerate(vector):
        if math.isnan(value) or math.isinf(value):
            raise TaskError(f"vector contains invalid float at index {index}")