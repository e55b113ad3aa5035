"""Upload of task artifacts to an S3-compatible object store."""

from __future__ import annotations

import hashlib
import hmac
import urllib.error
import urllib.request
from datetime import datetime, timezone
from urllib.parse import quote

from splai_worker.config import Config

DEFAULT_BUCKET = "splai-artifacts"
_REGION = "us-east-1"
_SERVICE = "s3"
_ALGORITHM = "AWS4-HMAC-SHA256"
_TIMEOUT = 30.0


class ObjectStoreError(Exception):
    """The object store could not be reached or refused a request."""


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


class _S3Client:
    """Path-style S3 client signing requests with Signature Version 4."""

    def __init__(self, endpoint: str, access_key: str, secret_key: str, secure: bool) -> None:
        if "://" in endpoint or "/" in endpoint:
            raise ObjectStoreError(f"invalid minio endpoint {endpoint!r}: expected host[:port]")
        scheme = "https" if secure else "http"
        default_port = ":443" if secure else ":80"
        self._host = endpoint[: -len(default_port)] if endpoint.endswith(default_port) else endpoint
        self._base = f"{scheme}://{endpoint}"
        self._access_key = access_key
        self._secret_key = secret_key

    def _sign(self, method: str, path: str, headers: dict, payload_hash: str, now: datetime) -> str:
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = now.strftime("%Y%m%d")
        signed = {
            "host": self._host,
            "x-amz-content-sha256": payload_hash,
            "x-amz-date": amz_date,
        }
        names = sorted(signed)
        canonical_headers = "".join(f"{name}:{signed[name]}\n" for name in names)
        signed_headers = ";".join(names)
        canonical_request = "\n".join(
            [method, path, "", canonical_headers, signed_headers, payload_hash]
        )
        scope = f"{date_stamp}/{_REGION}/{_SERVICE}/aws4_request"
        string_to_sign = "\n".join([
            _ALGORITHM,
            amz_date,
            scope,
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ])
        key = _hmac(("AWS4" + self._secret_key).encode("utf-8"), date_stamp)
        for part in (_REGION, _SERVICE, "aws4_request"):
            key = _hmac(key, part)
        signature = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()
        return (
            f"{_ALGORITHM} Credential={self._access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )

    def _request(self, method: str, segments: list, body: bytes = b"", content_type: str = "") -> int:
        path = "/" + "/".join(quote(segment, safe="-_.~") for segment in segments)
        now = datetime.now(timezone.utc)
        payload_hash = hashlib.sha256(body).hexdigest()
        headers = {
            "Host": self._host,
            "X-Amz-Date": now.strftime("%Y%m%dT%H%M%SZ"),
            "X-Amz-Content-Sha256": payload_hash,
        }
        if content_type:
            headers["Content-Type"] = content_type
        if self._access_key or self._secret_key:
            headers["Authorization"] = self._sign(method, path, headers, payload_hash, now)
        data = None if method == "HEAD" else body
        request = urllib.request.Request(self._base + path, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(request, timeout=_TIMEOUT) as response:
                response.read()
                return response.status
        except urllib.error.HTTPError as exc:
            if method == "HEAD" and exc.code == 404:
                return 404
            try:
                detail = exc.read(4096).decode("utf-8", errors="replace").strip()
            except OSError:
                detail = ""
            raise ObjectStoreError(f"{method} {path} failed: {exc.code} {exc.reason} {detail}".strip()) from exc
        except (urllib.error.URLError, OSError, ValueError) as exc:
            raise ObjectStoreError(f"{method} {path} failed: {exc}") from exc

    def bucket_exists(self, bucket: str) -> bool:
        return self._request("HEAD", [bucket]) != 404

    def make_bucket(self, bucket: str) -> None:
        self._request("PUT", [bucket])

    def put_object(self, bucket: str, name: str, data: bytes, content_type: str) -> None:
        self._request("PUT", [bucket, *name.split("/")], data, content_type)


def upload_to_minio(config: Config, local_path: str, job_id: str, task_id: str) -> str:
    """Upload ``local_path`` as ``<job>/<task>/output.json``, creating the bucket if needed.

    Returns the object name.
    """
    endpoint = (config.minio_endpoint or "").strip()
    if not endpoint:
        raise ObjectStoreError("minio endpoint is required when SPLAI_ARTIFACT_BACKEND=minio")
    client = _S3Client(endpoint, config.minio_access_key, config.minio_secret_key, config.minio_use_ssl)
    bucket = (config.minio_bucket or "").strip() or DEFAULT_BUCKET
    if not client.bucket_exists(bucket):
        client.make_bucket(bucket)
    object_name = f"{job_id}/{task_id}/output.json"
    try:
        with open(local_path, "rb") as handle:
            data = handle.read()
    except OSError as exc:
        raise ObjectStoreError(f"read artifact {local_path}: {exc}") from exc
    client.put_object(bucket, object_name, data, "application/json")
    return object_name