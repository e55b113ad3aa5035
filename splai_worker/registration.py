"""Registration of the worker with the control plane."""

from __future__ import annotations

import json
import urllib.error
import urllib.request

from splai_worker.api_types import RegisterWorkerRequest, to_payload
from splai_worker.config import Config

_TIMEOUT = 5.0


class RegistrationError(Exception):
    """The control plane refused the registration."""

    def __init__(self, status: str) -> None:
        super().__init__(f"register worker failed with status {status}")
        self.status = status


def normalize_backend_name(value: str) -> str:
    """Canonical spelling of an inference backend name."""
    name = (value or "").strip().lower()
    if name == "remote-api":
        return "remote_api"
    if name == "llamacpp":
        return "llama.cpp"
    return name


def infer_worker_backends(config: Config) -> list:
    """Sorted backends named in the config or implied by a configured base URL."""
    names = {normalize_backend_name(item) for item in (config.worker_backends or "").split(",")}
    implied = (
        (config.ollama_base_url, "ollama"),
        (config.vllm_base_url, "vllm"),
        (config.llamacpp_base_url, "llama.cpp"),
        (config.remote_api_base_url, "remote_api"),
    )
    names.update(name for url, name in implied if (url or "").strip())
    names.discard("")
    return sorted(names)


def register(config: Config) -> None:
    """Announce this worker and its capabilities to the control plane."""
    payload = RegisterWorkerRequest(
        worker_id=config.worker_id,
        cpu=8,
        memory="16Gi",
        gpu=False,
        models=["llama3-8b-q4"],
        tools=["bash", "python"],
        backends=infer_worker_backends(config),
        locality="local",
    )
    headers = {"Content-Type": "application/json"}
    token = (config.api_token or "").strip()
    if token:
        headers["X-SPLAI-Token"] = token
    url = config.control_plane_base_url.rstrip("/") + "/v1/workers/register"
    request = urllib.request.Request(
        url, data=json.dumps(to_payload(payload)).encode("utf-8"), headers=headers, method="POST"
    )
    try:
        with urllib.request.urlopen(request, timeout=_TIMEOUT) as response:
            response.read()
            if response.status >= 300:
                raise RegistrationError(f"{response.status} {response.reason}")
    except urllib.error.HTTPError as exc:
        raise RegistrationError(f"{exc.code} {exc.reason}") from exc