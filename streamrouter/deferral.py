"""Deferred execution through an external queue.

The router only needs ``send_message``; ``SQSQueueClient`` adapts a boto3 SQS
client to that shape so the router never imports an AWS client itself.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Mapping
from typing import Any, Protocol

import structlog

from streamrouter.models.records import DeferredRecordMessage

_log = structlog.get_logger(component="deferral")

MAX_DELAY_SECONDS = 900


class QueueClient(Protocol):
    """Minimal queue interface used for deferred handlers."""

    def send_message(
        self,
        queue_url: str,
        message_body: str,
        delay_seconds: int | None = None,
    ) -> Awaitable[Any] | Any: ...


class SQSQueueClient:
    """Adapts a boto3 ``sqs`` client to ``QueueClient``."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def send_message(self, queue_url: str, message_body: str, delay_seconds: int | None = None) -> Any:
        params: dict[str, Any] = {"QueueUrl": queue_url, "MessageBody": message_body}
        if delay_seconds is not None:
            params["DelaySeconds"] = delay_seconds
        response = self._client.send_message(**params)
        _log.debug("sqs_message_sent", queue_url=queue_url, message_id=response.get("MessageId"))
        return response


def create_sqs_client(region: str | None = None, endpoint_url: str | None = None) -> SQSQueueClient:
    """Build an ``SQSQueueClient`` backed by ``boto3.client("sqs")``."""
    import boto3

    client = boto3.client(
        "sqs",
        region_name=region or None,
        endpoint_url=endpoint_url or None,
    )
    return SQSQueueClient(client)


def _wire_record(record: Mapping[str, Any]) -> dict[str, Any]:
    # images attached by middleware are re-derived on the consuming side
    return {k: v for k, v in record.items() if k != "unmarshalled"}


def encode_message(handler_id: str, record: Mapping[str, Any]) -> str:
    """Serialise a deferred invocation to a queue message body."""
    message = DeferredRecordMessage(handler_id=handler_id, record=_wire_record(record))
    return json.dumps(message.to_dict())


def decode_message(body: Any) -> DeferredRecordMessage:
    """Parse a queue message body. Raises ``ValueError`` on malformed input."""
    if not isinstance(body, (str, bytes, bytearray)):
        raise ValueError(f"Deferred message body must be a string, got {type(body).__name__}")
    payload = json.loads(body)
    if not isinstance(payload, dict):
        raise ValueError("Deferred message body must be a JSON object")
    handler_id = payload.get("handlerId")
    record = payload.get("record")
    if not isinstance(handler_id, str) or not handler_id:
        raise ValueError("Deferred message is missing 'handlerId'")
    if not isinstance(record, dict):
        raise ValueError("Deferred message is missing 'record'")
    return DeferredRecordMessage(handler_id=handler_id, record=record)
