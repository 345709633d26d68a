"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from streamrouter.models.config import (
    APIConfig,
    LogConfig,
    QueueConfig,
    RouterConfig,
    StreamRouterConfig,
)
from streamrouter.models.records import StreamViewType


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"STREAMROUTER_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_view_type(value: str) -> str:
    normalised = value.strip().upper()
    valid = {v.value for v in StreamViewType}
    if normalised not in valid:
        raise ValueError(f"Invalid stream view type: {value}. Must be one of {sorted(valid)}")
    return normalised


def _validate_target(value: str) -> str:
    if value and value.count(":") != 1:
        raise ValueError(f"Invalid router target: {value}. Expected 'module:attribute'")
    return value


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    if value.lower() not in ("json", "console"):
        raise ValueError(f"Invalid log format: {value}. Must be 'json' or 'console'")
    return value.lower()


def load_config() -> StreamRouterConfig:
    """Load configuration from STREAMROUTER_* environment variables.

    The region is the standard ``AWS_REGION`` set by the Lambda runtime.
    """
    return StreamRouterConfig(
        region=os.environ.get("AWS_REGION", ""),
        router=RouterConfig(
            stream_view_type=_validate_view_type(_env("STREAM_VIEW_TYPE", "NEW_AND_OLD_IMAGES")),
            unmarshall=_env_bool("UNMARSHALL", True),
            same_region_only=_env_bool("SAME_REGION_ONLY", False),
            report_batch_item_failures=_env_bool("REPORT_BATCH_ITEM_FAILURES", False),
            target=_validate_target(_env("ROUTER", "")),
        ),
        queue=QueueConfig(
            defer_queue_url=_env("DEFER_QUEUE_URL", ""),
            endpoint_url=_env("QUEUE_ENDPOINT_URL", ""),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
