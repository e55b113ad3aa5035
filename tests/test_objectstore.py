import hashlib
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace

import pytest

from splai_worker.config import Config
from splai_worker.objectstore import ObjectStoreError, upload_to_minio


@pytest.fixture
def store():
    buckets = set()
    calls = []
    failing = set()

    class Handler(BaseHTTPRequestHandler):
        def _record(self):
            length = int(self.headers.get("Content-Length", 0) or 0)
            body = self.rfile.read(length) if length else b""
            calls.append({
                "method": self.command,
                "path": self.path,
                "headers": {k.lower(): v for k, v in self.headers.items()},
                "body": body,
            })

        def _reply(self, status):
            self.send_response(status)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def do_HEAD(self):
            self._record()
            self._reply(200 if self.path.strip("/") in buckets else 404)

        def do_PUT(self):
            self._record()
            if self.path in failing:
                self._reply(500)
                return
            parts = self.path.strip("/").split("/")
            if len(parts) == 1:
                buckets.add(parts[0])
            self._reply(200)

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield SimpleNamespace(
        endpoint=f"127.0.0.1:{httpd.server_port}", buckets=buckets, calls=calls, failing=failing
    )
    httpd.shutdown()
    httpd.server_close()


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "output.json"
    path.write_bytes(b'{"result": "ok"}')
    return path


def _config(store, **overrides):
    settings = dict(
        minio_endpoint=store.endpoint,
        minio_access_key="placeholder",
        minio_secret_key="secret",
        minio_bucket="splai-artifacts",
    )
    settings.update(overrides)
    return Config(**settings)


def test_requires_endpoint(artifact):
    with pytest.raises(ObjectStoreError, match="minio endpoint"):
        upload_to_minio(Config(artifact_backend="minio"), str(artifact), "job-1", "t1")


def test_rejects_endpoint_with_scheme(artifact):
    with pytest.raises(ObjectStoreError, match="invalid minio endpoint"):
        upload_to_minio(Config(minio_endpoint="http://localhost:9000"), str(artifact), "job-1", "t1")


def test_creates_missing_bucket_then_uploads(store, artifact):
    name = upload_to_minio(_config(store), str(artifact), "job-1", "t1")
    assert name == "job-1/t1/output.json"
    assert [(c["method"], c["path"]) for c in store.calls] == [
        ("HEAD", "/splai-artifacts"),
        ("PUT", "/splai-artifacts"),
        ("PUT", "/splai-artifacts/job-1/t1/output.json"),
    ]
    upload = store.calls[-1]
    assert upload["body"] == artifact.read_bytes()
    assert upload["headers"]["content-type"] == "application/json"


def test_existing_bucket_is_not_recreated(store, artifact):
    store.buckets.add("reports")
    upload_to_minio(_config(store, minio_bucket="reports"), str(artifact), "job-2", "t9")
    assert [(c["method"], c["path"]) for c in store.calls] == [
        ("HEAD", "/reports"),
        ("PUT", "/reports/job-2/t9/output.json"),
    ]


def test_blank_bucket_uses_default(store, artifact):
    upload_to_minio(_config(store, minio_bucket="   "), str(artifact), "job-1", "t1")
    assert store.calls[0]["path"] == "/splai-artifacts"


def test_requests_are_signed(store, artifact):
    upload_to_minio(_config(store), str(artifact), "job-1", "t1")
    headers = store.calls[-1]["headers"]
    auth = headers["authorization"]
    assert auth.startswith("AWS4-HMAC-SHA256 Credential=placeholder/")
    assert "/us-east-1/s3/aws4_request" in auth
    assert "SignedHeaders=host;x-amz-content-sha256;x-amz-date" in auth
    assert headers["x-amz-content-sha256"] == hashlib.sha256(artifact.read_bytes()).hexdigest()


def test_anonymous_requests_are_unsigned(store, artifact):
    upload_to_minio(_config(store, minio_access_key="", minio_secret_key=""), str(artifact), "job-1", "t1")
    assert all("authorization" not in c["headers"] for c in store.calls)
    assert store.calls[-1]["path"] == "/splai-artifacts/job-1/t1/output.json"


def test_server_error_raises(store, artifact):
    store.failing.add("/splai-artifacts/job-1/t1/output.json")
    with pytest.raises(ObjectStoreError, match="500"):
        upload_to_minio(_config(store), str(artifact), "job-1", "t1")


def test_missing_local_file_raises(store, tmp_path):
    with pytest.raises(ObjectStoreError, match="read artifact"):
        upload_to_minio(_config(store), str(tmp_path / "absent.json"), "job-1", "t1")