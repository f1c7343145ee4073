"""
Gunicorn config: uvicorn workers on $PORT plus lifecycle logs (logging-only).

Usage:
  gunicorn cloudrun_kms_rotator.main:app --config python:cloudrun_kms_rotator.gunicorn_conf
"""

from __future__ import annotations

import json
import os
import time
from datetime import datetime, timezone
from typing import Any

from cloudrun_kms_rotator.config import load_config

_CONFIG = load_config()

bind = f"{_CONFIG.host}:{_CONFIG.port}"
worker_class = "uvicorn.workers.UvicornWorker"
workers = _CONFIG.web_concurrency
# Cloud Run sends SIGTERM and provides ~10s for shutdown.
graceful_timeout = 10
accesslog = None


def _utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _emit(event_type: str, **fields: Any) -> None:
    payload: dict[str, Any] = {
        "timestamp": _utc_ts(),
        "severity": "INFO",
        "event_type": str(event_type),
        "service": _CONFIG.service_name,
        "env": _CONFIG.env,
        "pid": os.getpid(),
    }
    payload.update(fields)
    print(json.dumps(payload, separators=(",", ":"), ensure_ascii=False), flush=True)


_MASTER_START_MONO: float | None = None


def on_starting(server) -> None:  # noqa: D401
    global _MASTER_START_MONO
    _MASTER_START_MONO = time.monotonic()
    _emit("gunicorn.master.starting", gunicorn_pid=int(getattr(server, "pid", 0) or 0), bind=bind)


def when_ready(server) -> None:  # noqa: D401
    started = _MASTER_START_MONO
    elapsed_ms = int(max(0.0, (time.monotonic() - started) * 1000.0)) if started is not None else None
    _emit("gunicorn.master.ready", gunicorn_pid=int(getattr(server, "pid", 0) or 0), master_ready_ms=elapsed_ms)


def worker_abort(worker) -> None:  # noqa: D401
    _emit("gunicorn.worker.abort", severity="ERROR", worker_pid=int(getattr(worker, "pid", 0) or 0))
