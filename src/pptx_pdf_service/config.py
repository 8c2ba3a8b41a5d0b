"""Service configuration, read once from the environment."""

import logging
import math
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class ConfigError(ValueError):
    """Raised when required configuration is missing or malformed."""


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number of seconds, got {raw!r}") from None
    if not (0 < value < math.inf):
        raise ConfigError(f"{name} must be positive, got {raw}")
    return value


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    aws_region: str
    s3_bucket: str
    s3_endpoint_url: str | None = None
    s3_max_attempts: int = 1
    host: str = "0.0.0.0"
    port: int = 3000
    tmp_dir: Path = Path(tempfile.gettempdir())
    soffice_bin: str = "soffice"
    conversion_timeout_sec: float = 180
    request_timeout_sec: float = 240
    max_concurrent_conversions: int = 2
    max_pending_conversions: int = 8
    memory_log_interval_sec: float = 60
    log_level: str = "INFO"
    reload: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        AWS_REGION and S3_BUCKET are required; everything else has a default.
        Raises ConfigError when a required value is absent or a numeric value
        cannot be parsed.
        """
        env = os.environ if env is None else env
        region = env.get("AWS_REGION", "").strip()
        bucket = env.get("S3_BUCKET", "").strip()
        if not region or not bucket:
            raise ConfigError("AWS_REGION and S3_BUCKET must be set in env")

        tmp_dir = env.get("TMP_DIR", "").strip() or tempfile.gettempdir()
        return cls(
            aws_region=region,
            s3_bucket=bucket,
            s3_endpoint_url=env.get("S3_ENDPOINT_URL", "").strip() or None,
            s3_max_attempts=_env_int(env, "S3_MAX_ATTEMPTS", 1),
            host=env.get("HOST", "0.0.0.0"),
            port=_env_int(env, "PORT", 3000),
            tmp_dir=Path(tmp_dir).resolve(),
            soffice_bin=env.get("SOFFICE_BIN", "").strip() or "soffice",
            conversion_timeout_sec=_env_float(env, "CONVERSION_TIMEOUT_SEC", 180),
            request_timeout_sec=_env_float(env, "REQUEST_TIMEOUT_SEC", 240),
            max_concurrent_conversions=_env_int(env, "MAX_CONCURRENT_CONVERSIONS", 2),
            max_pending_conversions=_env_int(env, "MAX_PENDING_CONVERSIONS", 8),
            memory_log_interval_sec=_env_float(env, "MEMORY_LOG_INTERVAL_SEC", 60),
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
            reload=_env_bool(env, "RELOAD", False),
        )


@dataclass(frozen=True)
class KeepAliveSettings:
    service_url: str = "http://localhost:3000"
    # Platforms commonly idle a service after 15 minutes without traffic
    ping_interval_sec: float = 600
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "KeepAliveSettings":
        env = os.environ if env is None else env
        return cls(
            service_url=env.get("SERVICE_URL", "").strip() or cls.service_url,
            ping_interval_sec=_env_float(env, "PING_INTERVAL_SEC", cls.ping_interval_sec),
            log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
