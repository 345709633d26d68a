"""DynamoDB stream record decoding.

Converts the attribute-value wire encoding into native value trees with
boto3's type (de)serializers and lifts raw Lambda records into
``StreamRecord`` objects.
"""

from __future__ import annotations

import base64
import math
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from streamrouter.models.records import EventName, StreamRecord, StreamViewType

_TTL_PRINCIPAL = "dynamodb.amazonaws.com"


class _Deserializer(TypeDeserializer):
    """TypeDeserializer that yields plain ``bytes`` for B / BS values.

    Lambda delivers binary attributes as base64 text; boto3 expects bytes.
    """

    def _deserialize_b(self, value: Any) -> bytes:
        if isinstance(value, str):
            return base64.b64decode(value)
        if isinstance(value, (bytes, bytearray)):
            return bytes(value)
        raise TypeError(f"Binary attribute must be base64 text or bytes, got {type(value).__name__}")

    def _deserialize_bs(self, value: Any) -> set[bytes]:
        return {self._deserialize_b(v) for v in value}


_deserializer = _Deserializer()
_serializer = TypeSerializer()


def unmarshall(image: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Decode an attribute-value map into a native dict (``None`` stays ``None``)."""
    if image is None:
        return None
    return {key: _deserializer.deserialize(value) for key, value in image.items()}


def marshall(item: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Encode a native dict into an attribute-value map."""
    if item is None:
        return None
    return {key: _serializer.serialize(value) for key, value in item.items()}


def is_ttl_removal(raw: Mapping[str, Any]) -> bool:
    """Return True if *raw* is a REMOVE issued by DynamoDB's TTL sweeper."""
    if raw.get("eventName") != EventName.REMOVE:
        return False
    identity = raw.get("userIdentity") or {}
    return identity.get("type") == "Service" and identity.get("principalId") == _TTL_PRINCIPAL


def region_from_arn(arn: Any) -> str | None:
    """Extract the region segment from ``arn:aws:dynamodb:REGION:...``.

    Anything other than a non-empty string has no known region.
    """
    if not isinstance(arn, str) or not arn:
        return None
    parts = arn.split(":")
    if len(parts) < 4:
        return None
    return parts[3] or None


def _images(raw: Mapping[str, Any], unmarshall_images: bool) -> tuple[Any, Any, Any]:
    attached = raw.get("unmarshalled")
    if isinstance(attached, Mapping):
        return attached.get("Keys"), attached.get("OldImage"), attached.get("NewImage")
    ddb = raw.get("dynamodb") or {}
    keys, old, new = ddb.get("Keys"), ddb.get("OldImage"), ddb.get("NewImage")
    if unmarshall_images:
        return unmarshall(keys), unmarshall(old), unmarshall(new)
    return keys, old, new


def parse_record(
    raw: Mapping[str, Any],
    view_type: StreamViewType = StreamViewType.NEW_AND_OLD_IMAGES,
    unmarshall_images: bool = True,
) -> StreamRecord:
    """Build a ``StreamRecord`` from a raw Lambda stream record.

    Only the images *view_type* carries are kept. Raises ``ValueError`` for an
    unknown ``eventName``.
    """
    event_name = EventName(raw.get("eventName", ""))
    keys, old, new = _images(raw, unmarshall_images)
    if view_type in (StreamViewType.KEYS_ONLY, StreamViewType.NEW_IMAGE):
        old = None
    if view_type in (StreamViewType.KEYS_ONLY, StreamViewType.OLD_IMAGE):
        new = None
    ddb = raw.get("dynamodb") or {}
    return StreamRecord(
        event_name=event_name,
        event_id=str(raw.get("eventID") or ""),
        event_source_arn=str(raw.get("eventSourceARN") or ""),
        sequence_number=str(ddb.get("SequenceNumber") or ""),
        keys=keys,
        old_image=old,
        new_image=new,
        user_identity=raw.get("userIdentity"),
        raw=dict(raw),
    )


def to_jsonable(value: Any) -> Any:
    """Render a value tree with JSON-compatible types only."""
    if isinstance(value, Decimal):
        if not value.is_finite():
            return str(value)
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((to_jsonable(v) for v in value), key=repr)
    return value
