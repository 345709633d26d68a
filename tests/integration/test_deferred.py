"""Integration tests for deferred handlers.

The stream side enqueues matching records through a mocked queue client; the
queue side replays the captured message bodies through process_deferred.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamrouter import ConfigurationError, DeferredHandlerNotFoundError, StreamRouter, unmarshall_middleware
from streamrouter.deferral import SQSQueueClient, decode_message, encode_message

from .conftest import QUEUE_URL, make_event, make_insert, make_modify, make_sqs_event, user

pytestmark = pytest.mark.integration


def is_user(image) -> bool:
    return isinstance(image, dict) and image.get("type") == "user"


def _sent_bodies(client: MagicMock) -> list[str]:
    return [call.args[1] for call in client.send_message.call_args_list]


class TestEnqueue:
    async def test_matching_record_is_enqueued_not_invoked(self, queue_client: MagicMock) -> None:
        router = StreamRouter(defer_queue=QUEUE_URL, queue_client=queue_client)
        handler = MagicMock()
        router.on_insert(is_user, handler).defer("send-welcome")

        result = await router.process(make_event(make_insert(user()), make_insert({"pk": "order#1"})))

        handler.assert_not_called()
        assert result.succeeded == 2
        queue_client.send_message.assert_called_once()
        queue_url, body, delay = queue_client.send_message.call_args.args
        assert queue_url == QUEUE_URL
        assert delay is None
        payload = json.loads(body)
        assert payload["handlerId"] == "send-welcome"
        assert payload["record"]["eventName"] == "INSERT"

    async def test_per_handler_queue_and_delay(self, queue_client: MagicMock) -> None:
        router = StreamRouter(queue_client=queue_client)
        router.on_insert(is_user, MagicMock()).defer("slow", queue="https://example/q2", delay_seconds=30)

        await router.process(make_event(make_insert(user())))

        queue_url, _body, delay = queue_client.send_message.call_args.args
        assert queue_url == "https://example/q2"
        assert delay == 30

    async def test_async_queue_client(self) -> None:
        client = MagicMock()
        client.send_message = AsyncMock(return_value={"MessageId": "m-1"})
        router = StreamRouter(defer_queue=QUEUE_URL, queue_client=client)
        router.on_insert(is_user, MagicMock()).defer("async-send")

        result = await router.process(make_event(make_insert(user())))

        client.send_message.assert_awaited_once()
        assert result.failed == 0

    async def test_missing_queue_is_a_record_failure(self) -> None:
        router = StreamRouter()
        router.on_insert(is_user, MagicMock()).defer("nowhere")

        result = await router.process(make_event(make_insert(user(), sequence_number="9")))

        assert result.failed == 1
        assert isinstance(result.errors[0].error, ConfigurationError)
        assert result.failed_item_ids == ["9"]

    async def test_attached_images_are_not_sent(self, queue_client: MagicMock) -> None:
        router = StreamRouter(unmarshall=False, defer_queue=QUEUE_URL, queue_client=queue_client)
        router.use(unmarshall_middleware())
        router.on_insert(is_user, MagicMock()).defer("clean")

        await router.process(make_event(make_insert(user())))

        [body] = _sent_bodies(queue_client)
        assert "unmarshalled" not in json.loads(body)["record"]


class TestDeferRegistration:
    def test_delay_is_bounded(self) -> None:
        router = StreamRouter()
        registration = router.on_insert(is_user, MagicMock())
        with pytest.raises(ConfigurationError):
            registration.defer("too-slow", delay_seconds=901)

    def test_defer_needs_an_id(self) -> None:
        with pytest.raises(ConfigurationError):
            StreamRouter().on_insert(is_user, MagicMock()).defer("")

    def test_defer_id_must_be_unique(self) -> None:
        router = StreamRouter()
        router.on_insert(is_user, MagicMock(), handler_id="taken")
        with pytest.raises(ConfigurationError):
            router.on_insert(is_user, MagicMock()).defer("taken")

    def test_defer_returns_router(self) -> None:
        router = StreamRouter()
        assert router.on_insert(is_user, MagicMock()).defer("x") is router
        assert router.handlers[0].deferred
        assert router.handlers[0].handler_id == "x"


class TestProcessDeferred:
    async def test_round_trip(self, queue_client: MagicMock) -> None:
        router = StreamRouter(defer_queue=QUEUE_URL, queue_client=queue_client)
        seen: list[tuple] = []
        router.on_modify(is_user, lambda old, new, ctx: seen.append((old, new, ctx)), attribute="status").defer(
            "status-audit"
        )

        await router.process(make_event(make_modify(user(status="a"), user(status="b"), event_id="e-7")))
        assert seen == []

        result = await router.process_deferred(make_sqs_event(*_sent_bodies(queue_client)))

        assert (result.processed, result.succeeded, result.failed) == (1, 1, 0)
        [(old, new, ctx)] = seen
        assert (old["status"], new["status"]) == ("a", "b")
        assert ctx.event_id == "e-7"

    async def test_only_named_handler_runs(self) -> None:
        router = StreamRouter()
        first, second = MagicMock(), MagicMock()
        router.on_insert(is_user, first).defer("first")
        router.on_insert(is_user, second).defer("second")

        body = encode_message("second", make_insert(user()))
        await router.process_deferred(make_sqs_event(body))

        first.assert_not_called()
        second.assert_called_once()

    async def test_unknown_handler_fails_message(self) -> None:
        router = StreamRouter()
        router.on_insert(is_user, MagicMock()).defer("known")

        body = encode_message("renamed", make_insert(user()))
        response = await router.process_deferred(make_sqs_event(body), report_batch_item_failures=True)

        assert response == {"batchItemFailures": [{"itemIdentifier": "msg-0"}]}

    async def test_unknown_handler_error_type(self) -> None:
        router = StreamRouter()
        result = await router.process_deferred(make_sqs_event(encode_message("ghost", make_insert(user()))))

        assert isinstance(result.errors[0].error, DeferredHandlerNotFoundError)
        assert "ghost" in str(result.errors[0].error)

    async def test_malformed_body(self) -> None:
        router = StreamRouter()
        router.on_insert(is_user, MagicMock()).defer("known")

        result = await router.process_deferred(make_sqs_event("not json", json.dumps({"handlerId": "known"})))

        assert result.failed == 2
        assert result.failed_item_ids == ["msg-0", "msg-1"]

    async def test_non_string_bodies_fail_only_their_message(self) -> None:
        router = StreamRouter()
        handler = MagicMock()
        router.on_insert(is_user, handler).defer("known")

        event = make_sqs_event(encode_message("known", make_insert(user())))
        event["Records"][:0] = [
            {"messageId": "dict-body", "body": {"handlerId": "known"}},
            {"messageId": "int-body", "body": 42},
        ]
        result = await router.process_deferred(event)

        assert (result.processed, result.succeeded, result.failed) == (3, 1, 2)
        assert result.failed_item_ids == ["dict-body", "int-body"]
        assert all(isinstance(e.error, ValueError) for e in result.errors)
        handler.assert_called_once()

    async def test_handler_failure_reports_message_id(self) -> None:
        router = StreamRouter()
        router.on_insert(is_user, MagicMock(side_effect=RuntimeError("downstream"))).defer("flaky")

        ok = encode_message("flaky", make_insert(user("user#1")))
        response = await router.process_deferred(make_sqs_event(ok), report_batch_item_failures=True)

        assert response == {"batchItemFailures": [{"itemIdentifier": "msg-0"}]}

    async def test_deferred_batch_handler(self) -> None:
        router = StreamRouter()
        batches: list = []
        router.on_insert(is_user, batches.append, batch=True).defer("bulk")

        bodies = [encode_message("bulk", make_insert(user(f"user#{i}"))) for i in range(3)]
        await router.process_deferred(make_sqs_event(*bodies))

        [items] = batches
        assert len(items) == 3

    def test_sqs_handler(self) -> None:
        router = StreamRouter()
        handler = MagicMock()
        router.on_insert(is_user, handler).defer("sync")

        response = router.sqs_handler(make_sqs_event(encode_message("sync", make_insert(user()))))

        assert response == {"batchItemFailures": []}
        handler.assert_called_once()


class TestMessageCodec:
    def test_decode(self) -> None:
        message = decode_message(encode_message("h", {"eventName": "INSERT", "unmarshalled": {}}))
        assert message.handler_id == "h"
        assert message.record == {"eventName": "INSERT"}

    @pytest.mark.parametrize("body", ["[]", "{}", '{"handlerId": "", "record": {}}', '{"handlerId": "h"}'])
    def test_decode_rejects(self, body: str) -> None:
        with pytest.raises(ValueError):
            decode_message(body)

    @pytest.mark.parametrize("body", [{"handlerId": "h", "record": {}}, 42, None, ["h"]])
    def test_decode_rejects_non_string_body(self, body) -> None:
        with pytest.raises(ValueError, match="must be a string"):
            decode_message(body)


class TestSQSQueueClient:
    def test_send_message_parameters(self) -> None:
        boto_client = MagicMock()
        boto_client.send_message.return_value = {"MessageId": "abc"}
        client = SQSQueueClient(boto_client)

        client.send_message(QUEUE_URL, "{}", 15)
        boto_client.send_message.assert_called_once_with(QueueUrl=QUEUE_URL, MessageBody="{}", DelaySeconds=15)

    def test_delay_is_optional(self) -> None:
        boto_client = MagicMock()
        boto_client.send_message.return_value = {"MessageId": "abc"}
        SQSQueueClient(boto_client).send_message(QUEUE_URL, "{}")
        boto_client.send_message.assert_called_once_with(QueueUrl=QUEUE_URL, MessageBody="{}")
