"""Shared factories for streamrouter integration tests.

Builds raw Lambda stream and queue events with realistic shapes so the tests
can drive ``StreamRouter.process`` end to end without touching AWS.
"""

from __future__ import annotations

import itertools
from typing import Any
from unittest.mock import MagicMock

import pytest

from streamrouter.codec import marshall

REGION = "eu-west-1"
TABLE_ARN = f"arn:aws:dynamodb:{REGION}:123456789012:table/users/stream/2024-01-01T00:00:00.000"
OTHER_REGION_ARN = "arn:aws:dynamodb:us-east-1:123456789012:table/users/stream/2024-01-01T00:00:00.000"
QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/deferred"

_sequence = itertools.count(1000)

# ---------------------------------------------------------------------------
# Record factory helpers
# ---------------------------------------------------------------------------


def make_record(
    event_name: str = "MODIFY",
    old: dict[str, Any] | None = None,
    new: dict[str, Any] | None = None,
    keys: dict[str, Any] | None = None,
    event_id: str = "",
    sequence_number: str = "",
    source_arn: str = TABLE_ARN,
    user_identity: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create a raw DynamoDB stream record from native images.

    Images must avoid floats and bytes so they marshall cleanly.
    """
    seq = sequence_number or str(next(_sequence))
    image = new if new is not None else old
    if keys is None:
        keys = {"pk": image["pk"]} if image and "pk" in image else {"pk": f"item#{seq}"}
    ddb: dict[str, Any] = {
        "SequenceNumber": seq,
        "Keys": marshall(keys),
        "StreamViewType": "NEW_AND_OLD_IMAGES",
    }
    if old is not None:
        ddb["OldImage"] = marshall(old)
    if new is not None:
        ddb["NewImage"] = marshall(new)
    record: dict[str, Any] = {
        "eventID": event_id or f"evt-{seq}",
        "eventName": event_name,
        "eventSource": "aws:dynamodb",
        "awsRegion": REGION,
        "eventSourceARN": source_arn,
        "dynamodb": ddb,
    }
    if user_identity is not None:
        record["userIdentity"] = user_identity
    return record


def make_insert(new: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    return make_record("INSERT", new=new, **kwargs)


def make_modify(old: dict[str, Any], new: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    return make_record("MODIFY", old=old, new=new, **kwargs)


def make_remove(old: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    return make_record("REMOVE", old=old, **kwargs)


def make_ttl_removal(old: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    """Create a REMOVE record issued by the TTL sweeper."""
    return make_record(
        "REMOVE",
        old=old,
        user_identity={"type": "Service", "principalId": "dynamodb.amazonaws.com"},
        **kwargs,
    )


def make_event(*records: dict[str, Any]) -> dict[str, Any]:
    return {"Records": list(records)}


def make_sqs_event(*bodies: str) -> dict[str, Any]:
    """Create an SQS event whose messages carry the given bodies."""
    return {
        "Records": [
            {
                "messageId": f"msg-{i}",
                "receiptHandle": f"handle-{i}",
                "body": body,
                "eventSource": "aws:sqs",
            }
            for i, body in enumerate(bodies)
        ]
    }


def user(pk: str = "user#1", **attrs: Any) -> dict[str, Any]:
    return {"pk": pk, "type": "user", **attrs}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def queue_client() -> MagicMock:
    """Synchronous queue client recording every send."""
    client = MagicMock()
    client.send_message = MagicMock(return_value={"MessageId": "m-1"})
    return client
