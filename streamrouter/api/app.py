"""FastAPI application factory for streamrouter.

Usage::

    from streamrouter.api.app import create_app

    app = create_app(router=router, config=config)

Lets a router run as a long-lived HTTP service (local stream replay, a
webhook-fed consumer, a sidecar) as well as behind the Lambda entry points.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from streamrouter.api.routes import router as api_router
from streamrouter.api.schemas import ErrorResponse
from streamrouter.router import StreamRouter

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def create_app(router: StreamRouter, config: Any = None) -> FastAPI:
    """Create the FastAPI application serving *router*.

    Args:
        router: The StreamRouter whose handlers process posted events.
        config: Optional StreamRouterConfig, kept on ``app.state`` for routes.
    """
    from streamrouter import __version__

    app = FastAPI(
        title="streamrouter",
        summary="Attribute-aware DynamoDB stream routing",
        version=__version__,
        docs_url=f"{_API_PREFIX}/docs",
        redoc_url=f"{_API_PREFIX}/redoc",
        openapi_url=f"{_API_PREFIX}/openapi.json",
    )

    app.state.router = router
    app.state.config = config

    app.include_router(api_router, prefix=_API_PREFIX)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Map pydantic validation errors to the error envelope."""
        errors = exc.errors()
        detail = ""
        if errors:
            locs = errors[0].get("loc", ())
            field_name = ".".join(str(p) for p in locs[1:]) if len(locs) > 1 else ""
            msg = str(errors[0].get("msg", ""))
            detail = f"{field_name}: {msg}" if field_name else msg
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=detail).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
