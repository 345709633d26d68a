"""Stream record, handler context and processing result structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class EventName(StrEnum):
    """Mutation type carried by a stream record."""

    INSERT = "INSERT"
    MODIFY = "MODIFY"
    REMOVE = "REMOVE"


class StreamViewType(StrEnum):
    """Which images the stream delivers with each record."""

    KEYS_ONLY = "KEYS_ONLY"
    NEW_IMAGE = "NEW_IMAGE"
    OLD_IMAGE = "OLD_IMAGE"
    NEW_AND_OLD_IMAGES = "NEW_AND_OLD_IMAGES"


class ValidationTarget(StrEnum):
    """Which image(s) a MODIFY handler's matcher is evaluated against."""

    NEW_IMAGE = "new_image"
    OLD_IMAGE = "old_image"
    BOTH = "both"


class FailurePhase(StrEnum):
    """Where in the pipeline a record failed."""

    MIDDLEWARE = "middleware"
    HANDLER = "handler"


@dataclass(frozen=True)
class StreamRecord:
    """Decoded view of one raw stream record.

    Only the images the stream view type carries are populated; the rest are
    ``None``. ``raw`` is the record exactly as received (after middleware).
    """

    event_name: EventName
    event_id: str = ""
    event_source_arn: str = ""
    sequence_number: str = ""
    keys: dict[str, Any] | None = None
    old_image: dict[str, Any] | None = None
    new_image: dict[str, Any] | None = None
    user_identity: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class HandlerContext:
    """Metadata passed to every handler alongside the image(s)."""

    event_name: EventName
    event_id: str = ""
    event_source_arn: str = ""
    sequence_number: str = ""


@dataclass(frozen=True)
class BatchItem:
    """One record collected for a batch handler."""

    ctx: HandlerContext
    keys: dict[str, Any] | None = None
    old_image: Any = None
    new_image: Any = None


@dataclass(frozen=True)
class PrimaryKeyConfig:
    """Groups batch records by the table's primary key."""

    partition_key: str
    sort_key: str | None = None


@dataclass
class RecordError:
    """A failure captured while processing one record or batch."""

    record_id: str
    error: Exception
    phase: FailurePhase = FailurePhase.HANDLER


@dataclass
class ProcessingResult:
    """Outcome of ``StreamRouter.process`` / ``process_deferred``."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[RecordError] = field(default_factory=list)
    # identifiers reported back for partial batch responses, in failure order
    failed_item_ids: list[str] = field(default_factory=list)

    def mark_failed(self, item_id: str) -> None:
        if item_id and item_id not in self.failed_item_ids:
            self.failed_item_ids.append(item_id)

    def batch_item_failures(self) -> dict[str, list[dict[str, str]]]:
        return {"batchItemFailures": [{"itemIdentifier": i} for i in self.failed_item_ids]}


@dataclass(frozen=True)
class DeferredRecordMessage:
    """Queue message body for a deferred handler invocation."""

    handler_id: str
    record: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"handlerId": self.handler_id, "record": self.record}
