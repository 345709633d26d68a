"""Pydantic request / response models for the REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from streamrouter.models.changes import MISSING, ChangeKind, FilterSpec


class ErrorResponse(BaseModel):
    """Envelope for every non-2xx response."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    stream_view_type: str
    handlers: int
    deferred_handlers: int


class StreamEventRequest(BaseModel):
    """A DynamoDB stream event or an SQS event, as Lambda delivers it."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    records: list[dict[str, Any]] = Field(default_factory=list, alias="Records")


class FilterRequest(BaseModel):
    """Filter spec supplied to ``POST /diff``.

    A field value that is omitted is "no filter"; an explicit ``null`` is a
    filter for a stored null.
    """

    attribute: str | None = None
    change_kinds: list[ChangeKind] | None = None
    old_field_value: Any = None
    new_field_value: Any = None

    def to_spec(self) -> FilterSpec:
        provided = self.model_fields_set
        return FilterSpec(
            attribute=self.attribute,
            change_kinds=self.change_kinds,  # type: ignore[arg-type]
            old_field_value=self.old_field_value if "old_field_value" in provided else MISSING,
            new_field_value=self.new_field_value if "new_field_value" in provided else MISSING,
        )


class DiffRequest(BaseModel):
    old: dict[str, Any] | None = None
    new: dict[str, Any] | None = None
    # old/new are DynamoDB attribute-value maps rather than plain JSON
    attribute_values: bool = False
    filter: FilterRequest | None = None


class DiffResponse(BaseModel):
    has_changes: bool
    changes: list[dict[str, Any]] = Field(default_factory=list)
    matched: bool | None = None


class RecordErrorModel(BaseModel):
    record_id: str
    phase: str
    error: str


class ProcessingResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    errors: list[RecordErrorModel] = Field(default_factory=list)
