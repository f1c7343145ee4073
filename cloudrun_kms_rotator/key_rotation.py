"""
Cloud KMS rotation-period updates.

One operation: set a crypto key's rotation period to 90 days, restricted by
field mask to `rotation_period` so no other attribute of the key is touched.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Optional

from google.cloud import kms_v1
from google.protobuf import duration_pb2, field_mask_pb2

from cloudrun_kms_rotator.logging import log_event

ROTATION_PERIOD = timedelta(days=90)
ROTATION_PERIOD_SECONDS = int(ROTATION_PERIOD.total_seconds())  # 7,776,000
ROTATION_UPDATE_MASK = ("rotation_period",)

logger = logging.getLogger("cloudrun_kms_rotator.key_rotation")


class KeyRotationError(RuntimeError):
    def __init__(self, message: str, *, crypto_key_name: str, code: str = "") -> None:
        super().__init__(message)
        self.crypto_key_name = crypto_key_name
        self.code = code


def _exc_code(exc: BaseException) -> str:
    """
    Best-effort extraction of a stable Google/gRPC error code string.
    """
    try:
        # google.api_core errors expose the gRPC status separately from `.code` (HTTP).
        code = getattr(exc, "grpc_status_code", None) or getattr(exc, "code", None)
        if callable(code):
            code = code()
        if code is None:
            return ""
        # grpc.StatusCode has a `.name`
        name = getattr(code, "name", None)
        if isinstance(name, str) and name.strip():
            return name.strip().upper()
        return str(code).strip().upper()
    except Exception:
        return ""


def build_update_request(
    crypto_key_name: str,
    *,
    rotation_period: timedelta = ROTATION_PERIOD,
) -> kms_v1.UpdateCryptoKeyRequest:
    return kms_v1.UpdateCryptoKeyRequest(
        crypto_key=kms_v1.CryptoKey(
            name=crypto_key_name,
            rotation_period=duration_pb2.Duration(seconds=int(rotation_period.total_seconds())),
        ),
        update_mask=field_mask_pb2.FieldMask(paths=list(ROTATION_UPDATE_MASK)),
    )


class KeyRotator:
    """
    Submits rotation-period updates to Cloud KMS.

    A client is created per call (Application Default Credentials) and closed
    once the call returns. `client_factory` exists so callers can substitute
    a client; it must return an object usable as a context manager that
    exposes `update_crypto_key(request=...)`.
    """

    def __init__(self, *, client_factory: Optional[Callable[[], Any]] = None) -> None:
        self._client_factory = client_factory or kms_v1.KeyManagementServiceClient

    def update_rotation_period(self, crypto_key_name: str) -> Any:
        try:
            client = self._client_factory()
        except Exception as e:
            raise KeyRotationError(
                f"failed to create kms client: {e}",
                crypto_key_name=crypto_key_name,
                code=_exc_code(e),
            ) from e

        request = build_update_request(crypto_key_name)
        with client:
            try:
                updated = client.update_crypto_key(request=request)
            except Exception as e:
                raise KeyRotationError(
                    f"failed to update crypto key: {e}",
                    crypto_key_name=crypto_key_name,
                    code=_exc_code(e),
                ) from e

        log_event(
            logger,
            "kms.rotation_period_updated",
            message="Successfully updated crypto key rotation period",
            cryptoKeyName=crypto_key_name,
            rotationPeriod=f"{ROTATION_PERIOD_SECONDS}s",
        )
        return updated
