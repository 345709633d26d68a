"""Per-record middleware chain.

Middleware runs in registration order around dispatch of each raw record::

    async def audit(record: dict, next_: NextFn) -> None:
        started = time.monotonic()
        await next_()
        log.info("record_done", ms=(time.monotonic() - started) * 1000)

A middleware that returns without awaiting ``next_`` stops the chain and the
record is not dispatched. Exceptions propagate to the router, which reports
them with phase ``middleware``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from streamrouter.codec import unmarshall

NextFn = Callable[[], Awaitable[None]]
Middleware = Callable[[dict[str, Any], NextFn], Awaitable[None] | None]


async def run_chain(
    middleware: Sequence[Middleware],
    record: dict[str, Any],
    final: Callable[[], Awaitable[None]],
) -> None:
    """Run *record* through *middleware* and then *final*."""

    async def _step(index: int) -> None:
        if index == len(middleware):
            await final()
            return
        result = middleware[index](record, lambda: _step(index + 1))
        if inspect.isawaitable(result):
            await result

    await _step(0)


def unmarshall_middleware() -> Middleware:
    """Attach native images under ``record["unmarshalled"]``.

    For routers created with ``unmarshall=False``; the router prefers the
    attached images over decoding the wire format itself.
    """

    async def _unmarshall(record: dict[str, Any], next_: NextFn) -> None:
        ddb = record.get("dynamodb") or {}
        record["unmarshalled"] = {
            "NewImage": unmarshall(ddb.get("NewImage")),
            "OldImage": unmarshall(ddb.get("OldImage")),
            "Keys": unmarshall(ddb.get("Keys")),
        }
        await next_()

    return _unmarshall
