"""Stream router: handler registration and record dispatch.

Usage::

    router = StreamRouter(region="eu-west-1", same_region_only=True)

    router.on_insert(User, send_welcome_email)
    router.on_modify(is_user, audit_email_change, attribute="email", change_kinds="changed_attribute")
    router.on_ttl_remove(is_session, expire_session)
    router.on_insert(is_order, render_invoice).defer("render-invoice", delay_seconds=5)

    handler = router.stream_handler

For every record the router runs the middleware chain, picks the handlers
registered for the record's event name, evaluates each handler's matcher on
its validation target and, for MODIFY, the handler's filter spec against one
diff computed per record. Matching handlers are invoked immediately, collected
for batch invocation after the loop, or enqueued for deferred execution.

Failures never abort the batch: each record (or batch group) that raises is
counted, logged and reported in the ``ProcessingResult``.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from streamrouter.codec import is_ttl_removal, parse_record, region_from_arn
from streamrouter.deferral import MAX_DELAY_SECONDS, QueueClient, decode_message, encode_message
from streamrouter.diff import diff_attributes, get_nested_value, matches_filter
from streamrouter.errors import ConfigurationError, DeferredHandlerNotFoundError
from streamrouter.matchers import Matcher, build_matcher
from streamrouter.middleware import Middleware, run_chain
from streamrouter.models.changes import MISSING, ChangeKind, DiffResult, FilterSpec
from streamrouter.models.records import (
    BatchItem,
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
from streamrouter.observability.logging import get_logger, record_context
from streamrouter.observability.metrics import (
    deferred_messages_total,
    handler_invocations_total,
    record_failures_total,
    records_total,
)

_log = get_logger("router")

BatchKey = str | PrimaryKeyConfig | Callable[[Any], Any]

# handler_id -> group key -> [(item, item identifier)]
_Batches = dict[str, dict[str, list[tuple[BatchItem, str]]]]


@dataclass
class RegisteredHandler:
    """Internal registration record for one handler."""

    handler_id: str
    event_name: EventName
    matcher: Matcher
    handler: Callable[..., Any]
    filter: FilterSpec | None = None
    validation_target: ValidationTarget = ValidationTarget.NEW_IMAGE
    batch: bool = False
    batch_key: BatchKey | None = None
    ttl_only: bool = False
    exclude_ttl: bool = False
    deferred: bool = False
    defer_queue: str | None = None
    delay_seconds: int | None = None

    def accepts(self, record: StreamRecord) -> bool:
        if record.event_name != self.event_name:
            return False
        if self.ttl_only:
            return is_ttl_removal(record.raw)
        if self.exclude_ttl:
            return not is_ttl_removal(record.raw)
        return True


class HandlerRegistration:
    """Returned by the ``on_*`` methods; lets a handler be marked deferred."""

    def __init__(self, router: StreamRouter, registered: RegisteredHandler) -> None:
        self._router = router
        self._registered = registered

    @property
    def handler_id(self) -> str:
        return self._registered.handler_id

    @property
    def router(self) -> StreamRouter:
        return self._router

    def defer(
        self,
        handler_id: str,
        *,
        queue: str | None = None,
        delay_seconds: int | None = None,
    ) -> StreamRouter:
        """Enqueue matching records instead of invoking the handler inline.

        *handler_id* must be stable across deployments: the consuming side
        looks the handler up by this id. Returns the router for chaining.
        """
        self._router._mark_deferred(self._registered, handler_id, queue, delay_seconds)
        return self._router


class StreamRouter:
    """Routes stream records to registered handlers.

    Args:
        stream_view_type:  Which images the stream carries. Default NEW_AND_OLD_IMAGES.
        unmarshall:        Decode attribute values to native values before matching.
        same_region_only:  Skip records whose source ARN names another region.
        region:            Region this router runs in (used with same_region_only).
        defer_queue:       Default queue URL for deferred handlers.
        queue_client:      Queue client for deferred handlers.
    """

    def __init__(
        self,
        stream_view_type: StreamViewType | str = StreamViewType.NEW_AND_OLD_IMAGES,
        *,
        unmarshall: bool = True,
        same_region_only: bool = False,
        region: str | None = None,
        defer_queue: str | None = None,
        queue_client: QueueClient | None = None,
    ) -> None:
        try:
            self._stream_view_type = StreamViewType(stream_view_type)
        except ValueError:
            valid = ", ".join(v.value for v in StreamViewType)
            raise ConfigurationError(
                f"Invalid stream_view_type: {stream_view_type!r}. Valid options are: {valid}"
            ) from None
        self._unmarshall = unmarshall
        self._same_region_only = same_region_only
        self._region = region or None
        self._defer_queue = defer_queue or None
        self._queue_client = queue_client
        self._handlers: list[RegisteredHandler] = []
        self._middleware: list[Middleware] = []

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def stream_view_type(self) -> StreamViewType:
        return self._stream_view_type

    @property
    def unmarshall(self) -> bool:
        return self._unmarshall

    @property
    def same_region_only(self) -> bool:
        return self._same_region_only

    @property
    def region(self) -> str | None:
        return self._region

    @property
    def handlers(self) -> list[RegisteredHandler]:
        return list(self._handlers)

    @property
    def middleware(self) -> list[Middleware]:
        return list(self._middleware)

    @property
    def queue_client(self) -> QueueClient | None:
        return self._queue_client

    def configure_queue(self, defer_queue: str | None = None, queue_client: QueueClient | None = None) -> None:
        """Fill in the queue URL / client where the router was built without them."""
        if defer_queue and self._defer_queue is None:
            self._defer_queue = defer_queue
        if queue_client is not None and self._queue_client is None:
            self._queue_client = queue_client

    def is_record_from_same_region(self, event_source_arn: Any) -> bool:
        """True unless both the record's region and ours are known and differ."""
        if not event_source_arn or not self._region:
            return True
        record_region = region_from_arn(event_source_arn)
        if record_region is None:
            return True
        return record_region == self._region

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def use(self, middleware: Middleware) -> StreamRouter:
        """Append *middleware* to the per-record chain."""
        self._middleware.append(middleware)
        return self

    def on_insert(
        self,
        matcher: Any,
        handler: Callable[..., Any],
        *,
        batch: bool = False,
        batch_key: BatchKey | None = None,
        handler_id: str | None = None,
    ) -> HandlerRegistration:
        """Register *handler* for INSERT records: ``handler(new_image, ctx)``."""
        return self._register(EventName.INSERT, matcher, handler, batch=batch, batch_key=batch_key, handler_id=handler_id)

    def on_modify(
        self,
        matcher: Any,
        handler: Callable[..., Any],
        *,
        attribute: str | None = None,
        change_kinds: ChangeKind | str | list[ChangeKind | str] | None = None,
        old_field_value: Any = MISSING,
        new_field_value: Any = MISSING,
        filter: FilterSpec | None = None,  # noqa: A002
        validation_target: ValidationTarget | str = ValidationTarget.NEW_IMAGE,
        batch: bool = False,
        batch_key: BatchKey | None = None,
        handler_id: str | None = None,
    ) -> HandlerRegistration:
        """Register *handler* for MODIFY records: ``handler(old_image, new_image, ctx)``.

        The filter arguments (or a prebuilt ``FilterSpec``) restrict the
        handler to records whose diff touches *attribute* with one of
        *change_kinds* and whose old/new values at *attribute* equal the
        given field values.
        """
        if filter is None:
            filter = FilterSpec(  # noqa: A001
                attribute=attribute,
                change_kinds=change_kinds,  # type: ignore[arg-type]
                old_field_value=old_field_value,
                new_field_value=new_field_value,
            )
        try:
            target = ValidationTarget(validation_target)
        except ValueError:
            raise ConfigurationError(f"Invalid validation_target: {validation_target!r}") from None
        return self._register(
            EventName.MODIFY,
            matcher,
            handler,
            filter=filter,
            validation_target=target,
            batch=batch,
            batch_key=batch_key,
            handler_id=handler_id,
        )

    def on_remove(
        self,
        matcher: Any,
        handler: Callable[..., Any],
        *,
        exclude_ttl: bool = False,
        batch: bool = False,
        batch_key: BatchKey | None = None,
        handler_id: str | None = None,
    ) -> HandlerRegistration:
        """Register *handler* for REMOVE records: ``handler(old_image, ctx)``.

        TTL expirations are included unless *exclude_ttl* is set.
        """
        return self._register(
            EventName.REMOVE,
            matcher,
            handler,
            exclude_ttl=exclude_ttl,
            batch=batch,
            batch_key=batch_key,
            handler_id=handler_id,
        )

    def on_ttl_remove(
        self,
        matcher: Any,
        handler: Callable[..., Any],
        *,
        batch: bool = False,
        batch_key: BatchKey | None = None,
        handler_id: str | None = None,
    ) -> HandlerRegistration:
        """Register *handler* for REMOVE records issued by the TTL sweeper only."""
        return self._register(
            EventName.REMOVE,
            matcher,
            handler,
            ttl_only=True,
            batch=batch,
            batch_key=batch_key,
            handler_id=handler_id,
        )

    def _register(
        self,
        event_name: EventName,
        matcher: Any,
        handler: Callable[..., Any],
        *,
        filter: FilterSpec | None = None,  # noqa: A002
        validation_target: ValidationTarget = ValidationTarget.NEW_IMAGE,
        batch: bool = False,
        batch_key: BatchKey | None = None,
        ttl_only: bool = False,
        exclude_ttl: bool = False,
        handler_id: str | None = None,
    ) -> HandlerRegistration:
        if not callable(handler):
            raise ConfigurationError("handler must be callable")
        if batch_key is not None and not batch:
            raise ConfigurationError("batch_key requires batch=True")
        if handler_id is not None:
            self._ensure_unique_id(handler_id)

        if filter is not None and filter.has_value_filters and not filter.attribute:
            _log.warning(
                "value_filter_without_attribute",
                event_name=event_name.value,
                detail="handler will never fire; set attribute alongside old/new field values",
            )

        registered = RegisteredHandler(
            handler_id=handler_id or f"handler_{uuid4().hex[:12]}",
            event_name=event_name,
            matcher=build_matcher(matcher),
            handler=handler,
            filter=filter,
            validation_target=validation_target,
            batch=batch,
            batch_key=batch_key,
            ttl_only=ttl_only,
            exclude_ttl=exclude_ttl,
        )
        self._handlers.append(registered)
        _log.debug(
            "handler_registered",
            handler_id=registered.handler_id,
            event_name=event_name.value,
            batch=batch,
            ttl_only=ttl_only,
        )
        return HandlerRegistration(self, registered)

    def _ensure_unique_id(self, handler_id: str, ignore: RegisteredHandler | None = None) -> None:
        for existing in self._handlers:
            if existing is not ignore and existing.handler_id == handler_id:
                raise ConfigurationError(f"Duplicate handler id: {handler_id}")

    def _mark_deferred(
        self,
        registered: RegisteredHandler,
        handler_id: str,
        queue: str | None,
        delay_seconds: int | None,
    ) -> None:
        if not handler_id:
            raise ConfigurationError("Deferred handlers need an explicit handler id")
        if delay_seconds is not None and not 0 <= delay_seconds <= MAX_DELAY_SECONDS:
            raise ConfigurationError(f"delay_seconds must be between 0 and {MAX_DELAY_SECONDS}, got {delay_seconds}")
        self._ensure_unique_id(handler_id, ignore=registered)
        registered.handler_id = handler_id
        registered.deferred = True
        registered.defer_queue = queue
        registered.delay_seconds = delay_seconds

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(
        self,
        event: Mapping[str, Any],
        report_batch_item_failures: bool = False,
    ) -> ProcessingResult | dict[str, list[dict[str, str]]]:
        """Route every record of a stream event.

        Returns the ``ProcessingResult``, or the Lambda partial-batch response
        (failed sequence numbers) when *report_batch_item_failures* is set.
        """
        result = ProcessingResult()
        batches: _Batches = {}

        for index, raw in enumerate(event.get("Records") or []):
            result.processed += 1
            ddb = raw.get("dynamodb")
            if not isinstance(ddb, Mapping):
                ddb = {}
            item_id = str(ddb.get("SequenceNumber") or raw.get("eventID") or "")
            record_id = str(raw.get("eventID") or item_id or f"record_{index}")
            records_total.labels(event_name=str(raw.get("eventName", "unknown"))).inc()

            if self._same_region_only and not self.is_record_from_same_region(raw.get("eventSourceARN")):
                _log.debug("record_skipped_other_region", record_id=record_id, region=self._region)
                result.succeeded += 1
                continue

            await self._process_record(raw, self._handlers, result, batches, record_id, item_id, enqueue=True)

        await self._flush_batches(batches, result)
        if report_batch_item_failures:
            return result.batch_item_failures()
        return result

    async def process_deferred(
        self,
        event: Mapping[str, Any],
        report_batch_item_failures: bool = False,
    ) -> ProcessingResult | dict[str, list[dict[str, str]]]:
        """Execute deferred handlers from a queue event (one message per record)."""
        result = ProcessingResult()
        batches: _Batches = {}
        deferred = {h.handler_id: h for h in self._handlers if h.deferred}

        for index, message in enumerate(event.get("Records") or []):
            result.processed += 1
            message_id = str(message.get("messageId") or "")
            record_id = message_id or f"message_{index}"
            try:
                decoded = decode_message(message.get("body") or "")
                registered = deferred.get(decoded.handler_id)
                if registered is None:
                    raise DeferredHandlerNotFoundError(decoded.handler_id)
            except (ValueError, DeferredHandlerNotFoundError) as exc:
                _log.warning("deferred_message_rejected", message_id=message_id, error=str(exc))
                deferred_messages_total.labels(outcome="failed").inc()
                record_failures_total.labels(phase=FailurePhase.HANDLER.value).inc()
                result.failed += 1
                result.errors.append(RecordError(record_id, exc, FailurePhase.HANDLER))
                result.mark_failed(message_id)
                continue

            ok = await self._process_record(
                decoded.record, [registered], result, batches, record_id, message_id, enqueue=False
            )
            deferred_messages_total.labels(outcome="processed" if ok else "failed").inc()

        await self._flush_batches(batches, result)
        if report_batch_item_failures:
            return result.batch_item_failures()
        return result

    def stream_handler(self, event: Mapping[str, Any], context: Any = None) -> dict[str, list[dict[str, str]]]:
        """Synchronous Lambda entry point for the stream trigger."""
        return asyncio.run(self.process(event, report_batch_item_failures=True))  # type: ignore[return-value]

    def sqs_handler(self, event: Mapping[str, Any], context: Any = None) -> dict[str, list[dict[str, str]]]:
        """Synchronous Lambda entry point for the deferred-queue trigger."""
        return asyncio.run(self.process_deferred(event, report_batch_item_failures=True))  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Per-record pipeline
    # ------------------------------------------------------------------

    async def _process_record(
        self,
        raw: dict[str, Any],
        candidates: list[RegisteredHandler],
        result: ProcessingResult,
        batches: _Batches,
        record_id: str,
        item_id: str,
        *,
        enqueue: bool,
    ) -> bool:
        handler_error: Exception | None = None

        async def _final() -> None:
            nonlocal handler_error
            try:
                record = parse_record(raw, self._stream_view_type, self._unmarshall)
                with record_context(record):
                    await self._dispatch(record, candidates, batches, item_id, enqueue=enqueue)
            except Exception as exc:  # noqa: BLE001
                handler_error = exc

        try:
            await run_chain(self._middleware, raw, _final)
        except Exception as exc:  # noqa: BLE001
            self._record_failure(result, record_id, item_id, exc, FailurePhase.MIDDLEWARE)
            return False

        if handler_error is not None:
            self._record_failure(result, record_id, item_id, handler_error, FailurePhase.HANDLER)
            return False

        result.succeeded += 1
        return True

    def _record_failure(
        self,
        result: ProcessingResult,
        record_id: str,
        item_id: str,
        exc: Exception,
        phase: FailurePhase,
    ) -> None:
        _log.warning(
            "record_failed",
            record_id=record_id,
            phase=phase.value,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        record_failures_total.labels(phase=phase.value).inc()
        result.failed += 1
        result.errors.append(RecordError(record_id, exc, phase))
        result.mark_failed(item_id)

    async def _dispatch(
        self,
        record: StreamRecord,
        candidates: list[RegisteredHandler],
        batches: _Batches,
        item_id: str,
        *,
        enqueue: bool,
    ) -> None:
        diff: DiffResult | None = None

        def _diff() -> DiffResult:
            nonlocal diff
            if diff is None:
                diff = diff_attributes(record.old_image, record.new_image)
            return diff

        for registered in candidates:
            if not registered.accepts(record):
                continue
            item = self._match(registered, record, _diff)
            if item is None:
                continue

            if registered.deferred and enqueue:
                await self._enqueue(registered, record)
            elif registered.batch:
                group = self._batch_group(registered, record)
                batches.setdefault(registered.handler_id, {}).setdefault(group, []).append((item, item_id))
            else:
                handler_invocations_total.labels(handler_id=registered.handler_id, mode="immediate").inc()
                await _call(registered.handler, *self._handler_args(registered, item))

    def _match(
        self,
        registered: RegisteredHandler,
        record: StreamRecord,
        diff: Callable[[], DiffResult],
    ) -> BatchItem | None:
        ctx = HandlerContext(
            event_name=record.event_name,
            event_id=record.event_id,
            event_source_arn=record.event_source_arn,
            sequence_number=record.sequence_number,
        )

        if self._stream_view_type is StreamViewType.KEYS_ONLY:
            outcome = registered.matcher.evaluate(record.keys)
            if not outcome.matched:
                return None
            if record.event_name is EventName.MODIFY and not matches_filter(registered.filter, diff()):
                return None
            return BatchItem(ctx=ctx, keys=outcome.value)

        old, new = record.old_image, record.new_image
        if record.event_name is EventName.INSERT:
            outcome = registered.matcher.evaluate(new)
            if not outcome.matched:
                return None
            new = outcome.value
        elif record.event_name is EventName.REMOVE:
            outcome = registered.matcher.evaluate(old)
            if not outcome.matched:
                return None
            old = outcome.value
        else:
            target = registered.validation_target
            if target in (ValidationTarget.OLD_IMAGE, ValidationTarget.BOTH):
                outcome = registered.matcher.evaluate(old)
                if not outcome.matched:
                    return None
                old = outcome.value
            if target in (ValidationTarget.NEW_IMAGE, ValidationTarget.BOTH):
                outcome = registered.matcher.evaluate(new)
                if not outcome.matched:
                    return None
                new = outcome.value
            if not matches_filter(registered.filter, diff(), record.old_image, record.new_image):
                return None

        return BatchItem(ctx=ctx, keys=record.keys, old_image=old, new_image=new)

    def _handler_args(self, registered: RegisteredHandler, item: BatchItem) -> tuple[Any, ...]:
        if self._stream_view_type is StreamViewType.KEYS_ONLY:
            return (item.keys, item.ctx)
        if registered.event_name is EventName.INSERT:
            return (item.new_image, item.ctx)
        if registered.event_name is EventName.MODIFY:
            return (item.old_image, item.new_image, item.ctx)
        return (item.old_image, item.ctx)

    def _batch_group(self, registered: RegisteredHandler, record: StreamRecord) -> str:
        key = registered.batch_key
        if key is None:
            return ""
        if self._stream_view_type is StreamViewType.KEYS_ONLY:
            image = record.keys
        elif record.event_name is EventName.REMOVE:
            image = record.old_image
        else:
            image = record.new_image

        if isinstance(key, PrimaryKeyConfig):
            source = record.keys or image
            parts = [get_nested_value(source, key.partition_key)]
            if key.sort_key:
                parts.append(get_nested_value(source, key.sort_key))
            return "#".join("" if p is MISSING else str(p) for p in parts)
        if isinstance(key, str):
            value = get_nested_value(image, key)
            return "" if value is MISSING else str(value)
        return str(key(image))

    async def _flush_batches(self, batches: _Batches, result: ProcessingResult) -> None:
        by_id = {h.handler_id: h for h in self._handlers}
        for handler_id, groups in batches.items():
            registered = by_id[handler_id]
            for group, entries in groups.items():
                items = [item for item, _ in entries]
                handler_invocations_total.labels(handler_id=handler_id, mode="batch").inc()
                try:
                    await _call(registered.handler, items)
                except Exception as exc:  # noqa: BLE001
                    batch_id = f"batch_{handler_id}_{group}" if group else f"batch_{handler_id}"
                    _log.warning(
                        "batch_failed",
                        handler_id=handler_id,
                        group=group,
                        size=len(items),
                        error=str(exc),
                    )
                    record_failures_total.labels(phase=FailurePhase.HANDLER.value).inc()
                    result.failed += 1
                    result.errors.append(RecordError(batch_id, exc, FailurePhase.HANDLER))
                    for _, item_id in entries:
                        result.mark_failed(item_id)

    async def _enqueue(self, registered: RegisteredHandler, record: StreamRecord) -> None:
        queue_url = registered.defer_queue or self._defer_queue
        if not queue_url:
            raise ConfigurationError(f"No queue configured for deferred handler {registered.handler_id}")
        if self._queue_client is None:
            raise ConfigurationError(f"No queue client configured for deferred handler {registered.handler_id}")

        body = encode_message(registered.handler_id, record.raw)
        await _call(self._queue_client.send_message, queue_url, body, registered.delay_seconds)
        handler_invocations_total.labels(handler_id=registered.handler_id, mode="deferred").inc()
        deferred_messages_total.labels(outcome="enqueued").inc()
        _log.debug("deferred_enqueued", handler_id=registered.handler_id, queue_url=queue_url)


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable and await the result if needed."""
    result = fn(*args)
    if inspect.isawaitable(result):
        return await result
    return result
