"""
Environment -> service configuration.

Every knob is read once when the app is built; nothing here is mutated afterwards.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

DEFAULT_PORT = 8080
DEFAULT_HOST = "0.0.0.0"
DEFAULT_SERVICE_NAME = "cloudrun-kms-rotator"

ROTATION_MODE_UPDATE = "UPDATE"
ROTATION_MODE_LOG_ONLY = "LOG_ONLY"
ROTATION_MODES = frozenset({ROTATION_MODE_UPDATE, ROTATION_MODE_LOG_ONLY})
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class ConfigError(ValueError):
    pass


def _get_nonempty(env: Mapping[str, str], name: str) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def _parse_int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _get_nonempty(env, name)
    if raw is None:
        return int(default)
    try:
        return int(raw)
    except Exception:
        return int(default)


def _parse_log_level(env: Mapping[str, str]) -> str:
    level = (_get_nonempty(env, "LOG_LEVEL") or "INFO").upper()
    if level == "WARN":
        return "WARNING"
    if level not in LOG_LEVELS:
        return "INFO"
    return level


def _parse_port(env: Mapping[str, str]) -> int:
    port = _parse_int_env(env, "PORT", DEFAULT_PORT)
    if port <= 0 or port > 65535:
        return DEFAULT_PORT
    return port


@dataclass(frozen=True)
class ServiceConfig:
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    rotation_mode: str = ROTATION_MODE_UPDATE
    log_level: str = "INFO"
    service_name: str = DEFAULT_SERVICE_NAME
    env: str = "prod"
    web_concurrency: int = 1

    @property
    def log_only(self) -> bool:
        return self.rotation_mode == ROTATION_MODE_LOG_ONLY

    def to_dict(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "host": self.host,
            "rotation_mode": self.rotation_mode,
            "log_level": self.log_level,
            "service_name": self.service_name,
            "env": self.env,
            "web_concurrency": self.web_concurrency,
        }


def load_config(env: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    """
    Build a `ServiceConfig` from environment variables.

    Unparseable numbers and log levels fall back to their defaults. An unknown ROTATION_MODE
    raises `ConfigError`.
    """
    e: Mapping[str, str] = os.environ if env is None else env

    mode = (_get_nonempty(e, "ROTATION_MODE") or ROTATION_MODE_UPDATE).upper().replace("-", "_")
    if mode not in ROTATION_MODES:
        raise ConfigError(f"Invalid ROTATION_MODE: {mode!r} (expected one of: {', '.join(sorted(ROTATION_MODES))})")

    return ServiceConfig(
        port=_parse_port(e),
        host=_get_nonempty(e, "HOST") or DEFAULT_HOST,
        rotation_mode=mode,
        log_level=_parse_log_level(e),
        service_name=_get_nonempty(e, "SERVICE_NAME") or _get_nonempty(e, "K_SERVICE") or DEFAULT_SERVICE_NAME,
        env=_get_nonempty(e, "ENV") or "prod",
        web_concurrency=max(1, _parse_int_env(e, "WEB_CONCURRENCY", 1)),
    )
