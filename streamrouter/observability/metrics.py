"""Prometheus counters for record routing."""

from __future__ import annotations

from prometheus_client import Counter

records_total = Counter(
    "streamrouter_records_total",
    "Stream records received, by event name",
    ["event_name"],
)

record_failures_total = Counter(
    "streamrouter_record_failures_total",
    "Records or batches that failed, by pipeline phase",
    ["phase"],
)

handler_invocations_total = Counter(
    "streamrouter_handler_invocations_total",
    "Handler invocations, by handler and mode (immediate, batch, deferred)",
    ["handler_id", "mode"],
)

deferred_messages_total = Counter(
    "streamrouter_deferred_messages_total",
    "Deferred queue messages, by outcome (enqueued, processed, failed)",
    ["outcome"],
)
