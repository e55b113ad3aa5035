"""Small JSON-over-HTTP client used to talk to model and retrieval backends."""

from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from typing import Any


class BackendError(Exception):
    """A backend request failed or returned something unusable."""


def post_json(url: str, auth: str, body: Any, timeout: float = 8.0) -> Any:
    """POST ``body`` as JSON and return the decoded JSON response."""
    try:
        data = json.dumps(body).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise BackendError(f"cannot encode request body: {exc}") from exc
    headers = {"Content-Type": "application/json"}
    if auth:
        headers["Authorization"] = auth
    try:
        request = urllib.request.Request(url, data=data, headers=headers, method="POST")
    except ValueError as exc:
        raise BackendError(str(exc)) from exc
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read()
    except urllib.error.HTTPError as exc:
        try:
            message = exc.read(4096).decode("utf-8", errors="replace").strip()
        except OSError:
            message = ""
        raise BackendError(f"backend request failed: {exc.code} {exc.reason} {message}") from exc
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise BackendError(f"backend request failed: {exc}") from exc
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BackendError(f"invalid JSON response from {url}: {exc}") from exc


def post_json_with_retry(url: str, auth: str, body: Any, attempts: int = 1) -> Any:
    """Call post_json up to ``attempts`` times, backing off 250 ms more each retry."""
    last_error = None
    for attempt in range(max(attempts, 1)):
        if attempt:
            time.sleep(attempt * 0.25)
        try:
            return post_json(url, auth, body)
        except BackendError as exc:
            last_error = exc
    raise last_error