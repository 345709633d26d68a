"""REST API route handlers."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from streamrouter.api.schemas import (
    DiffRequest,
    DiffResponse,
    ErrorResponse,
    HealthResponse,
    ProcessingResponse,
    RecordErrorModel,
    StreamEventRequest,
)
from streamrouter.codec import to_jsonable, unmarshall
from streamrouter.diff import diff_attributes, matches_filter
from streamrouter.models.records import ProcessingResult

_log = structlog.get_logger(component="api.routes")

router = APIRouter()


def _processing_body(result: ProcessingResult | dict[str, Any]) -> dict[str, Any]:
    if isinstance(result, dict):
        return result
    return ProcessingResponse(
        processed=result.processed,
        succeeded=result.succeeded,
        failed=result.failed,
        errors=[RecordErrorModel(record_id=e.record_id, phase=e.phase.value, error=str(e.error)) for e in result.errors],
    ).model_dump()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    from streamrouter import __version__

    stream_router = request.app.state.router
    handlers = stream_router.handlers
    return HealthResponse(
        version=__version__,
        stream_view_type=stream_router.stream_view_type.value,
        handlers=len(handlers),
        deferred_handlers=sum(1 for h in handlers if h.deferred),
    )


@router.post("/stream")
async def process_stream(
    request: Request,
    body: StreamEventRequest,
    report_batch_item_failures: bool = Query(default=False),
) -> JSONResponse:
    """Route a stream event through the configured router."""
    result = await request.app.state.router.process(
        {"Records": body.records},
        report_batch_item_failures=report_batch_item_failures,
    )
    return JSONResponse(status_code=200, content=_processing_body(result))


@router.post("/deferred")
async def process_deferred(
    request: Request,
    body: StreamEventRequest,
    report_batch_item_failures: bool = Query(default=False),
) -> JSONResponse:
    """Execute deferred handlers from a queue event."""
    result = await request.app.state.router.process_deferred(
        {"Records": body.records},
        report_batch_item_failures=report_batch_item_failures,
    )
    return JSONResponse(status_code=200, content=_processing_body(result))


@router.post("/diff", response_model=DiffResponse)
async def diff(body: DiffRequest) -> DiffResponse | JSONResponse:
    """Diff two images and optionally evaluate a filter spec against the result."""
    old: Any = body.old
    new: Any = body.new
    if body.attribute_values:
        try:
            old, new = unmarshall(old), unmarshall(new)
        except (TypeError, ValueError, AttributeError, KeyError, IndexError, ArithmeticError) as exc:
            _log.info("diff_rejected_attribute_values", error=str(exc))
            return JSONResponse(
                status_code=400,
                content=ErrorResponse(error="INVALID_ATTRIBUTE_VALUE", detail=str(exc)).model_dump(),
            )

    result = diff_attributes(old, new)
    matched = None
    if body.filter is not None:
        matched = matches_filter(body.filter.to_spec(), result, old, new)
    return DiffResponse(
        has_changes=result.has_changes,
        changes=[to_jsonable(c.to_dict()) for c in result.changes],
        matched=matched,
    )


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
