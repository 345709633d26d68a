"""Core data structures for streamrouter."""

from streamrouter.models.changes import MISSING, AttributeChange, ChangeKind, DiffResult, FilterSpec
from streamrouter.models.config import StreamRouterConfig
from streamrouter.models.records import (
    BatchItem,
    DeferredRecordMessage,
    EventName,
    FailurePhase,
    HandlerContext,
    PrimaryKeyConfig,
    ProcessingResult,
    RecordError,
    StreamRecord,
    StreamViewType,
    ValidationTarget,
)

__all__ = [
    "MISSING",
    "AttributeChange",
    "BatchItem",
    "ChangeKind",
    "DeferredRecordMessage",
    "DiffResult",
    "EventName",
    "FailurePhase",
    "FilterSpec",
    "HandlerContext",
    "PrimaryKeyConfig",
    "ProcessingResult",
    "RecordError",
    "StreamRecord",
    "StreamRouterConfig",
    "StreamViewType",
    "ValidationTarget",
]
