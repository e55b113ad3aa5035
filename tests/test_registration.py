import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from splai_worker.config import Config
from splai_worker.registration import (
    RegistrationError,
    infer_worker_backends,
    normalize_backend_name,
    register,
)


class _Recorder:
    def __init__(self):
        self.requests = []
        self.routes = {}
        self.lock = threading.Lock()
        self.url = ""


def _make_handler(rec):
    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length) if length else b""
            with rec.lock:
                rec.requests.append({
                    "path": self.path,
                    "headers": self.headers,
                    "body": json.loads(raw) if raw else None,
                })
            status, body = rec.routes.get(self.path, (200, {"accepted": True}))
            data = json.dumps(body).encode()
            self.send_response(status)
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, *args):
            pass

    return Handler


@pytest.fixture
def plane():
    rec = _Recorder()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(rec))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    rec.url = f"http://127.0.0.1:{server.server_address[1]}"
    yield rec
    server.shutdown()
    server.server_close()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("remote-api", "remote_api"),
        ("LlamaCPP", "llama.cpp"),
        (" VLLM ", "vllm"),
        ("", ""),
        ("  ", ""),
        ("ollama", "ollama"),
    ],
)
def test_normalize_backend_name(raw, expected):
    assert normalize_backend_name(raw) == expected


def test_infer_backends_merges_list_and_urls_sorted():
    cfg = Config(worker_backends="vllm, remote-api,", ollama_base_url="http://localhost:11434")
    assert infer_worker_backends(cfg) == ["ollama", "remote_api", "vllm"]


def test_infer_backends_deduplicates_aliases():
    cfg = Config(worker_backends="llamacpp,llama.cpp", llamacpp_base_url="http://localhost:9000")
    assert infer_worker_backends(cfg) == ["llama.cpp"]


def test_infer_backends_empty_when_nothing_configured():
    assert infer_worker_backends(Config(ollama_base_url="   ")) == []


def test_register_posts_capabilities(plane):
    cfg = Config(
        worker_id="w-reg",
        control_plane_base_url=plane.url + "/",
        api_token="token",
        vllm_base_url="http://localhost:8000",
    )
    register(cfg)
    assert len(plane.requests) == 1
    req = plane.requests[0]
    assert req["path"] == "/v1/workers/register"
    assert req["headers"].get("X-SPLAI-Token") == "token"
    body = req["body"]
    assert body["worker_id"] == "w-reg"
    assert body["cpu"] == 8
    assert body["memory"] == "16Gi"
    assert body["gpu"] is False
    assert body["models"] == ["llama3-8b-q4"]
    assert body["tools"] == ["bash", "python"]
    assert body["backends"] == ["vllm"]
    assert body["locality"] == "local"


def test_register_omits_empty_backends_and_token(plane):
    register(Config(worker_id="w0", control_plane_base_url=plane.url))
    req = plane.requests[0]
    assert "backends" not in req["body"]
    assert req["headers"].get("X-SPLAI-Token") is None


def test_register_rejected_raises(plane):
    plane.routes["/v1/workers/register"] = (403, {"error": "denied"})
    with pytest.raises(RegistrationError) as info:
        register(Config(worker_id="w0", control_plane_base_url=plane.url))
    assert str(info.value).startswith("register worker failed with status 403")