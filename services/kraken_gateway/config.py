"""Environment-driven settings for the Kraken gateway."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from services.kraken_gateway.kraken_rest import KRAKEN_REST_URL

REQUIRED_ENV_VARS = ("KRAKEN_API_KEY", "KRAKEN_API_SECRET")
DEFAULT_PORT = 3240


@dataclass(frozen=True)
class GatewaySettings:
    api_key: str = ""
    api_secret: str = ""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    kraken_api_url: str = KRAKEN_REST_URL
    request_timeout: float = 10.0
    max_retries: int = 1
    self_test_url: Optional[str] = None
    shutdown_timeout: float = 30.0
    log_level: str = "INFO"

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


def _value(environ: Mapping[str, str], name: str, default: str) -> str:
    raw = environ.get(name)
    if raw is None:
        return default
    stripped = raw.strip()
    return stripped or default


def _int_value(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = _value(environ, name, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer; received {raw!r}") from exc


def _float_value(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = _value(environ, name, str(default))
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number; received {raw!r}") from exc


def missing_credentials(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """Return the names of required credential variables that are unset or blank."""

    env = os.environ if environ is None else environ
    return [name for name in REQUIRED_ENV_VARS if not (env.get(name) or "").strip()]


def load_settings(environ: Optional[Mapping[str, str]] = None) -> GatewaySettings:
    """Build :class:`GatewaySettings` from *environ* (defaults to ``os.environ``)."""

    env = os.environ if environ is None else environ

    port = _int_value(env, "PORT", DEFAULT_PORT)
    if not 0 < port < 65536:
        raise ValueError(f"PORT must be between 1 and 65535; received {port}")

    self_test_url = _value(env, "KRAKEN_GATEWAY_SELF_TEST_URL", "") or None

    return GatewaySettings(
        api_key=_value(env, "KRAKEN_API_KEY", ""),
        api_secret=_value(env, "KRAKEN_API_SECRET", ""),
        host=_value(env, "KRAKEN_GATEWAY_HOST", "0.0.0.0"),
        port=port,
        kraken_api_url=_value(env, "KRAKEN_API_URL", KRAKEN_REST_URL),
        request_timeout=_float_value(env, "KRAKEN_REQUEST_TIMEOUT", 10.0),
        max_retries=_int_value(env, "KRAKEN_MAX_RETRIES", 1),
        self_test_url=self_test_url.rstrip("/") if self_test_url else None,
        shutdown_timeout=_float_value(env, "KRAKEN_GATEWAY_SHUTDOWN_TIMEOUT", 30.0),
        log_level=_value(env, "LOG_LEVEL", "INFO").upper(),
    )


__all__ = [
    "DEFAULT_PORT",
    "GatewaySettings",
    "REQUIRED_ENV_VARS",
    "load_settings",
    "missing_credentials",
]
