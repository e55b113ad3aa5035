"""Model installation and sandboxed command execution on the worker host."""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from splai_worker.config import Config
from splai_worker.inputs import TaskError

_DEFAULT_EXEC_PATH = "/usr/local/bin:/usr/bin:/bin:/opt/homebrew/bin"
_SANDBOX_TIMEOUT = 30.0


@dataclass(frozen=True)
class SandboxResult:
    """Captured output of a sandboxed command."""

    stdout: str
    stderr: str


class SandboxError(TaskError):
    """A sandboxed command failed or timed out; carries what it printed."""

    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


def default_exec_path() -> str:
    """The PATH used when the environment provides none."""
    return _DEFAULT_EXEC_PATH


def dir_has_contents(path: str) -> bool:
    """True if ``path`` is a directory holding at least one entry."""
    try:
        with os.scandir(path) as entries:
            return any(True for _ in entries)
    except OSError:
        return False


def look_path_with_fallback(binary: str) -> str:
    """Find ``binary`` on PATH or in the default directories; '' if absent."""
    found = shutil.which(binary)
    if found:
        return found
    for directory in default_exec_path().split(":"):
        if not directory.strip():
            continue
        candidate = os.path.join(directory, binary)
        if os.path.isfile(candidate):
            return candidate
    return ""


def process_env_with_path_fallback(environ: Optional[Mapping] = None) -> dict:
    """A copy of the environment whose PATH is the default when missing or blank."""
    env = dict(os.environ if environ is None else environ)
    if not env.get("PATH", "").strip():
        env["PATH"] = default_exec_path()
    return env


def _run_downloader(args: list, label: str) -> None:
    try:
        proc = subprocess.run(
            args,
            env=process_env_with_path_fallback(),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        raise TaskError(f"{label} failed: {exc}") from exc
    if proc.returncode != 0:
        output = proc.stdout.decode("utf-8", errors="replace").strip()
        raise TaskError(f"{label} failed: exit status {proc.returncode} ({output})")


def download_from_huggingface(model: str, target_dir: str) -> None:
    """Fetch ``model`` into ``target_dir`` with hf, huggingface-cli or git."""
    hf = look_path_with_fallback("hf")
    if hf:
        _run_downloader([hf, "download", model, "--local-dir", target_dir], "hf download")
        return
    cli = look_path_with_fallback("huggingface-cli")
    if cli:
        _run_downloader(
            [cli, "download", model, "--local-dir", target_dir, "--local-dir-use-symlinks", "False"],
            "huggingface-cli download",
        )
        return
    git = look_path_with_fallback("git")
    if not git:
        raise TaskError("no huggingface downloader found (hf, huggingface-cli, git) in PATH")
    _run_downloader(
        [git, "clone", "--depth", "1", "https://huggingface.co/" + model, target_dir],
        "git clone fallback",
    )


def ensure_model_installed(config: Config, model: str, source: str, only_if_missing: bool) -> tuple:
    """Make sure ``model`` is in the model cache; return ``(path, installed_now)``."""
    model = (model or "").strip()
    source = (source or "").strip().lower()
    if not model:
        raise TaskError("model is required")
    if not source:
        source = "huggingface"
    if source != "huggingface":
        raise TaskError(f'unsupported model source "{source}"')
    cache_root = (config.model_cache_dir or "").strip() or os.path.join(config.artifact_root, "models")
    target_dir = os.path.normpath(os.path.join(cache_root, model.replace("/", os.sep)))
    if dir_has_contents(target_dir) and only_if_missing:
        return target_dir, False
    try:
        os.makedirs(os.path.dirname(target_dir), mode=0o755, exist_ok=True)
        if not only_if_missing:
            shutil.rmtree(target_dir, ignore_errors=True)
        os.makedirs(target_dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise TaskError(f"prepare model directory {target_dir}: {exc}") from exc
    download_from_huggingface(model, target_dir)
    return target_dir, True


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def run_sandboxed_command(
    artifact_root: str, job_id: str, task_id: str, command: str, timeout: float = _SANDBOX_TIMEOUT
) -> SandboxResult:
    """Run ``command`` with /bin/sh in a private directory, a minimal env and a time limit."""
    sandbox_dir = os.path.join(artifact_root, "sandboxes", job_id, task_id)
    try:
        os.makedirs(sandbox_dir, mode=0o700, exist_ok=True)
    except OSError as exc:
        raise SandboxError(f"create sandbox {sandbox_dir}: {exc}") from exc
    env = {"PATH": "/usr/bin:/bin", "HOME": sandbox_dir, "TMPDIR": sandbox_dir}
    try:
        proc = subprocess.run(
            ["/bin/sh", "-c", command],
            cwd=sandbox_dir,
            env=env,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        raise SandboxError("sandbox command timed out", _decode(exc.stdout), _decode(exc.stderr)) from exc
    except OSError as exc:
        raise SandboxError(f"sandbox command failed: {exc}") from exc
    stdout, stderr = _decode(proc.stdout), _decode(proc.stderr)
    if proc.returncode != 0:
        raise SandboxError(f"sandbox command failed: exit status {proc.returncode}", stdout, stderr)
    return SandboxResult(stdout=stdout, stderr=stderr)