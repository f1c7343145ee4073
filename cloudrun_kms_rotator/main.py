"""
cloudrun_kms_rotator entrypoint

Runtime assumptions (documented for deploy/debug):
- Typically served by `uvicorn cloudrun_kms_rotator.main:app` or gunicorn with
  `--config python:cloudrun_kms_rotator.gunicorn_conf`; `python -m
  cloudrun_kms_rotator.main` runs uvicorn directly on $PORT (default 8080).
- Eventarc delivers audit-log events as a JSON POST to any path; the only field
  read is `protoPayload.resourceName`.
- KMS credentials come from Application Default Credentials (the Cloud Run
  service account).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from cloudrun_kms_rotator.config import ServiceConfig, load_config
from cloudrun_kms_rotator.key_rotation import KeyRotationError, KeyRotator
from cloudrun_kms_rotator.logging import (
    init_structured_logging,
    install_fastapi_request_id_middleware,
    log_event,
)
from cloudrun_kms_rotator.payload import PayloadError, extract_crypto_key_name, parse_payload

ALLOWED_METHOD = "POST"

MSG_PROCESSED = "Event received and processed successfully."
MSG_LOGGED = "Event received and logged successfully."

logger = logging.getLogger("cloudrun_kms_rotator")


def _pretty(data: Any) -> str:
    try:
        return json.dumps(data, indent=2, ensure_ascii=False)
    except RecursionError:
        # The indenting encoder recurses in Python; fall back to the C encoder.
        return json.dumps(data, ensure_ascii=False)


async def receive_event(request: Request) -> dict[str, Any]:
    """
    Eventarc webhook handler.

    Required behavior:
    - POST only (405 otherwise, nothing else is done)
    - body must be a JSON object (400 otherwise)
    - UPDATE mode: protoPayload.resourceName must be a string (400 otherwise),
      then exactly one UpdateCryptoKey call (500 if it fails)
    - LOG_ONLY mode: pretty-print the payload, never call KMS
    """
    config: ServiceConfig = request.app.state.config
    path = str(request.url.path)

    if request.method != ALLOWED_METHOD:
        log_event(
            logger,
            "webhook.rejected",
            severity="ERROR",
            message="Invalid request method",
            reason="invalid_method",
            method=request.method,
            path=path,
        )
        raise HTTPException(status_code=405, detail="Invalid request method", headers={"Allow": ALLOWED_METHOD})

    try:
        body = await request.body()
    except Exception as e:
        log_event(
            logger,
            "webhook.rejected",
            severity="ERROR",
            message="Failed to read request body",
            reason="body_read_failed",
            error=str(e),
            path=path,
        )
        raise HTTPException(status_code=400, detail="Failed to read request body") from e

    try:
        payload = parse_payload(body)
    except PayloadError as e:
        log_event(
            logger,
            "webhook.rejected",
            severity="ERROR",
            message="Failed to unmarshal JSON payload",
            reason=e.reason,
            error=str(e),
            path=path,
        )
        raise HTTPException(status_code=400, detail="Failed to unmarshal JSON payload") from e

    log_event(logger, "webhook.payload_received", severity="DEBUG", payload=payload.unwrap())

    if config.log_only:
        log_event(
            logger,
            "webhook.payload_logged",
            message="Received Eventarc payload",
            payload_pretty=_pretty(payload.unwrap()),
        )
        return {"ok": True, "message": MSG_LOGGED}

    try:
        crypto_key_name = extract_crypto_key_name(payload)
    except PayloadError as e:
        log_event(
            logger,
            "webhook.key_name_missing",
            severity="ERROR",
            message="Failed to extract crypto key name from payload",
            reason=e.reason,
            error=str(e),
        )
        raise HTTPException(status_code=400, detail="Failed to extract crypto key name from payload") from e

    rotator: KeyRotator = request.app.state.key_rotator
    try:
        await asyncio.to_thread(rotator.update_rotation_period, crypto_key_name)
    except KeyRotationError as e:
        log_event(
            logger,
            "kms.rotation_update_failed",
            severity="ERROR",
            message="Failed to update crypto key rotation period",
            cryptoKeyName=crypto_key_name,
            error=str(e),
            error_code=e.code,
        )
        raise HTTPException(status_code=500, detail="Failed to update crypto key rotation period") from e

    return {"ok": True, "message": MSG_PROCESSED, "cryptoKeyName": crypto_key_name}


async def _webhook_endpoint(request: Request) -> JSONResponse:
    return JSONResponse(await receive_event(request))


def create_app(
    config: Optional[ServiceConfig] = None,
    *,
    key_rotator: Optional[KeyRotator] = None,
    configure_logging: bool = True,
) -> FastAPI:
    cfg = config or load_config()
    if configure_logging:
        init_structured_logging(service=cfg.service_name, env=cfg.env, level=cfg.log_level)

    app = FastAPI(title="Cloud Run Eventarc → KMS Rotation Period", version="0.1.0", docs_url=None, redoc_url=None)
    app.state.config = cfg
    app.state.key_rotator = key_rotator or KeyRotator()

    install_fastapi_request_id_middleware(app, service=cfg.service_name)
    # No method list: every method reaches the handler, which owns the 405.
    app.add_route("/{full_path:path}", _webhook_endpoint)

    log_event(logger, "startup.config", severity="INFO", config=cfg.to_dict())
    return app


def _fail_startup(exc: BaseException) -> None:
    log_event(logger, "startup.failed", severity="CRITICAL", outcome="failure", error=str(exc))


try:
    app = create_app()
except Exception as _e:
    # Config errors surface before create_app configures logging.
    init_structured_logging(level="INFO")
    _fail_startup(_e)
    raise


def run() -> None:
    """Serve `app` with uvicorn; a bind failure or crash exits with status 1."""
    import uvicorn

    cfg: ServiceConfig = app.state.config
    log_event(logger, "startup.listening", severity="INFO", message="Listening on port", port=cfg.port)
    try:
        uvicorn.run(app, host=cfg.host, port=cfg.port, log_level="warning", access_log=False)
    except SystemExit as e:
        if e.code not in (None, 0):
            _fail_startup(e)
            raise SystemExit(1) from e
        raise
    except Exception as e:
        _fail_startup(e)
        raise SystemExit(1) from e


if __name__ == "__main__":
    run()
