"""Command that registers the worker and runs it until interrupted."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Optional, Sequence

from splai_worker.config import from_env
from splai_worker.executor import Executor
from splai_worker.heartbeat import HeartbeatClient
from splai_worker.registration import RegistrationError, register
from splai_worker.runtime import Runtime

_LOG = logging.getLogger("splai_worker.agent")


def _parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(
        prog="splai-worker",
        description="Register with the control plane and execute assigned tasks. "
        "Settings are read from SPLAI_* environment variables.",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the worker agent; returns the process exit status."""
    _parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    stop = threading.Event()
    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, lambda signum, frame: stop.set())
        except (ValueError, OSError):
            continue
    try:
        config = from_env()
        try:
            register(config)
        except (RegistrationError, OSError) as exc:
            _LOG.error("register worker: %s", exc)
            return 1
        heartbeat = HeartbeatClient(
            config.control_plane_base_url, config.worker_id, config.api_token, config.heartbeat_interval
        )
        Runtime(config, Executor(config), heartbeat).run(stop)
        return 0
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    raise SystemExit(main())