"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RouterConfig:
    """Stream router configuration."""

    stream_view_type: str = "NEW_AND_OLD_IMAGES"
    unmarshall: bool = True
    same_region_only: bool = False
    report_batch_item_failures: bool = False
    # module:attribute of the StreamRouter the app serves
    target: str = ""


@dataclass
class QueueConfig:
    """Deferred-processing queue configuration."""

    defer_queue_url: str = ""
    endpoint_url: str = ""


@dataclass
class APIConfig:
    """REST API configuration."""

    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class StreamRouterConfig:
    """Top-level streamrouter configuration."""

    region: str = ""
    router: RouterConfig = field(default_factory=RouterConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
