import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace

import pytest

from splai_worker.backends import BackendClient
from splai_worker.config import Config
from splai_worker.httpjson import BackendError
from splai_worker.inputs import TaskError
from splai_worker.textsearch import RetrievalDoc, embed_text


@pytest.fixture
def server():
    routes = {}
    calls = []

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            length = int(self.headers.get("Content-Length", 0))
            raw = self.rfile.read(length)
            calls.append({
                "path": self.path,
                "headers": {k.lower(): v for k, v in self.headers.items()},
                "body": json.loads(raw) if raw else None,
            })
            if self.path not in routes:
                self.send_response(404)
                self.send_header("Content-Length", "0")
                self.end_headers()
                return
            status, payload = routes[self.path]
            data = json.dumps(payload).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield SimpleNamespace(url=f"http://127.0.0.1:{httpd.server_port}", routes=routes, calls=calls)
    httpd.shutdown()
    httpd.server_close()


def _llm_routes(server):
    server.routes.update({
        "/v1/completions": (200, {"choices": [{"text": "vllm-ok"}]}),
        "/completion": (200, {"content": "llamacpp-ok"}),
        "/api/generate": (200, {"response": "ollama-ok"}),
        "/v1/chat/completions": (200, {"choices": [{"message": {"content": "remote-ok"}}]}),
    })


def _client(server, **overrides):
    settings = dict(
        ollama_base_url=server.url,
        vllm_base_url=server.url,
        llamacpp_base_url=server.url,
        remote_api_base_url=server.url,
        remote_api_key="token",
        retrieval_base_url=server.url,
        retrieval_api_key="token",
    )
    settings.update(overrides)
    return BackendClient(Config(**settings))


@pytest.mark.parametrize(
    "backend,expected",
    [
        ("ollama", "ollama-ok"),
        ("", "ollama-ok"),
        ("vllm", "vllm-ok"),
        ("llama.cpp", "llamacpp-ok"),
        ("llamacpp", "llamacpp-ok"),
        ("remote_api", "remote-ok"),
        ("REMOTE-API", "remote-ok"),
    ],
)
def test_run_llm_adapters(server, backend, expected):
    _llm_routes(server)
    assert _client(server).run_llm(backend, "test-model", "hello") == expected


def test_remote_llm_sends_bearer_and_messages(server):
    _llm_routes(server)
    _client(server).run_llm("remote_api", "", "hello")
    call = server.calls[-1]
    assert call["headers"]["authorization"] == "Bearer token"
    assert call["body"]["messages"] == [{"role": "user", "content": "hello"}]
    assert call["body"]["model"] == "gpt-4o-mini"


def test_ollama_uses_default_model(server):
    _llm_routes(server)
    _client(server).run_llm("ollama", "", "hello")
    body = server.calls[-1]["body"]
    assert body["model"] == "llama3-8b-q4"
    assert body["stream"] is False


def test_llm_requires_configured_base_url():
    client = BackendClient(Config())
    with pytest.raises(TaskError, match="SPLAI_OLLAMA_BASE_URL"):
        client.run_llm("ollama", "m", "hello")
    with pytest.raises(TaskError, match="SPLAI_VLLM_BASE_URL"):
        client.run_llm("vllm", "m", "hello")


def test_unsupported_llm_backend():
    with pytest.raises(TaskError, match="unsupported llm backend"):
        BackendClient(Config()).run_llm("mystery", "m", "hello")


def test_empty_llm_response_is_error(server):
    server.routes["/api/generate"] = (200, {"response": "   "})
    with pytest.raises(BackendError, match="empty response"):
        _client(server).run_llm("ollama", "m", "hello")


def test_http_error_surfaces(server):
    with pytest.raises(BackendError, match="404"):
        _client(server).run_llm("vllm", "m", "hello")


def test_local_embeddings_match_embed_text():
    vectors, version = BackendClient(Config()).embed_texts("local", "m", ["hello world", "other"], 16)
    assert version == "local-hash-v1"
    assert vectors == [embed_text("hello world", 16), embed_text("other", 16)]
    assert all(len(v) == 16 for v in vectors)


def test_ollama_batch_embeddings(server):
    server.routes["/api/embed"] = (200, {"model": "nomic-embed-text", "embeddings": [[0.1, 0.2], [0.3, 0.4]]})
    vectors, version = _client(server).embed_texts("ollama", "nomic-embed-text", ["hello world", "another input"], 16)
    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    assert version == "nomic-embed-text"


def test_ollama_falls_back_to_single_endpoint(server):
    server.routes["/api/embeddings"] = (200, {"embedding": [0.5, 0.6]})
    vectors, version = _client(server).embed_texts("ollama", "my-model", ["a", "b"], 16)
    assert vectors == [[0.5, 0.6], [0.5, 0.6]]
    assert version == "my-model"
    assert [c["path"] for c in server.calls] == ["/api/embed", "/api/embeddings", "/api/embeddings"]
    assert server.calls[1]["body"] == {"model": "my-model", "prompt": "a"}


def test_ollama_single_empty_embedding_is_error(server):
    server.routes["/api/embeddings"] = (200, {"embedding": []})
    with pytest.raises(BackendError, match="empty embedding"):
        _client(server).embed_texts("ollama", "m", ["a"], 16)


def test_openai_compatible_embeddings(server):
    server.routes["/v1/embeddings"] = (200, {
        "model": "text-embedding-3-small",
        "data": [{"embedding": [0.9, 0.8, 0.7]}, {"embedding": [0.6, 0.5, 0.4]}],
    })
    client = _client(server)
    vectors, version = client.embed_texts("vllm", "text-embedding-3-small", ["one", "two"], 16)
    assert vectors == [[0.9, 0.8, 0.7], [0.6, 0.5, 0.4]]
    assert version == "text-embedding-3-small"
    assert "authorization" not in server.calls[-1]["headers"]
    client.embed_texts("remote_api", "m", ["one", "two"], 16)
    assert server.calls[-1]["headers"]["authorization"] == "Bearer token"


def test_openai_compatible_count_mismatch(server):
    server.routes["/v1/embeddings"] = (200, {"data": [{"embedding": [0.1]}]})
    with pytest.raises(BackendError, match="count mismatch"):
        _client(server).embed_texts("vllm", "m", ["one", "two"], 16)


def test_openai_compatible_requires_base_url():
    with pytest.raises(TaskError, match="embedding base URL is required"):
        BackendClient(Config()).embed_texts("vllm", "m", ["one"], 16)


def test_unsupported_embedding_backend():
    with pytest.raises(TaskError, match="unsupported embedding backend"):
        BackendClient(Config()).embed_texts("Local", "m", ["one"], 16)


def test_retrieve_local_filters_documents():
    docs = [
        RetrievalDoc(id="d1", text="eu west outage", metadata={"tenant": "acme"}),
        RetrievalDoc(id="d3", text="eu west outage root cause", metadata={"tenant": "other"}),
    ]
    hits = BackendClient(Config()).retrieve("local", "outage in eu west", docs, {"tenant": "acme"}, 5)
    assert [hit["id"] for hit in hits] == ["d1"]


def test_retrieve_remote(server):
    server.routes["/v1/retrieve"] = (200, {"documents": [{"id": "rd1", "score": 0.99, "text": "remote hit"}]})
    docs = [RetrievalDoc(id="d1", text="hello world", metadata={"tenant": "acme"})]
    hits = _client(server).retrieve("remote_api", "hello", docs, {}, 3)
    assert hits == [{"id": "rd1", "score": 0.99, "text": "remote hit"}]
    call = server.calls[-1]
    assert call["headers"]["authorization"] == "Bearer token"
    assert call["body"]["top_k"] == 3
    assert call["body"]["documents"] == [{"id": "d1", "text": "hello world", "metadata": {"tenant": "acme"}}]


def test_retrieve_remote_requires_base_url():
    with pytest.raises(TaskError, match="SPLAI_RETRIEVAL_BASE_URL"):
        BackendClient(Config()).retrieve("remote", "q", [], {}, 5)


def test_unsupported_retrieval_backend():
    with pytest.raises(TaskError, match="unsupported retrieval backend"):
        BackendClient(Config()).retrieve("elastic", "q", [], {}, 5)