"""Application bootstrap for running a router as an HTTP service.

Startup order: config -> logging -> router -> queue client -> REST.
Shutdown runs in reverse; a failing stop step is logged and does not prevent
the remaining steps.
"""

from __future__ import annotations

import asyncio
import importlib
import signal
from typing import TYPE_CHECKING

from streamrouter.config import load_config
from streamrouter.models.config import StreamRouterConfig
from streamrouter.observability.logging import get_logger, setup_logging
from streamrouter.router import StreamRouter

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


def load_router(target: str, config: StreamRouterConfig | None = None) -> StreamRouter:
    """Import the router named by ``module:attribute``.

    An empty target yields a bare router built from *config*, which is useful
    for exercising ``/diff`` without any handlers.
    """
    if not target:
        cfg = config or StreamRouterConfig()
        return StreamRouter(
            cfg.router.stream_view_type,
            unmarshall=cfg.router.unmarshall,
            same_region_only=cfg.router.same_region_only,
            region=cfg.region or None,
            defer_queue=cfg.queue.defer_queue_url or None,
        )
    module_name, _, attribute = target.partition(":")
    module = importlib.import_module(module_name)
    obj = getattr(module, attribute)
    if callable(obj) and not isinstance(obj, StreamRouter):
        obj = obj()
    if not isinstance(obj, StreamRouter):
        raise TypeError(f"{target} is not a StreamRouter (got {type(obj).__name__})")
    return obj


class StreamRouterApp:
    """Owns the router and the REST server and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that never started.
    """

    def __init__(self) -> None:
        self.config: StreamRouterConfig | None = None
        self.router: StreamRouter | None = None
        self._rest_server: object | None = None
        self._background_tasks: list[asyncio.Task[None]] = []
        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    async def start(self) -> None:
        """Start all components in dependency order."""
        self.config = load_config()

        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("streamrouter starting", version=_version())

        self._start_router()
        self._start_queue_client()
        await self._start_rest()

        self._running = True
        self._log.info("streamrouter started", port=self.config.api.port)

    def _start_router(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            self.router = load_router(self.config.router.target, self.config)
        except Exception as exc:
            raise _ComponentError("router", exc) from exc
        self._log.info(
            "router loaded",
            target=self.config.router.target or "<empty>",
            handlers=len(self.router.handlers),
            stream_view_type=self.router.stream_view_type.value,
        )

    def _start_queue_client(self) -> None:
        """Attach an SQS client when deferred handlers exist and none was given."""
        assert self._log is not None
        assert self.config is not None
        assert self.router is not None
        if not any(h.deferred for h in self.router.handlers) or self.router.queue_client is not None:
            self.router.configure_queue(defer_queue=self.config.queue.defer_queue_url or None)
            return
        try:
            from streamrouter.deferral import create_sqs_client

            client = create_sqs_client(self.config.region, self.config.queue.endpoint_url)
        except Exception as exc:
            raise _ComponentError("queue_client", exc) from exc
        self.router.configure_queue(defer_queue=self.config.queue.defer_queue_url or None, queue_client=client)
        self._log.info("sqs queue client attached", queue_url=self.config.queue.defer_queue_url)

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self.router is not None
        try:
            import uvicorn

            from streamrouter.api import create_app

            fastapi_app = create_app(router=self.router, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    async def stop(self) -> None:
        """Stop the REST server and cancel background tasks."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("streamrouter shutting down")
        self._running = False

        server = self._rest_server
        if server is not None:
            server.should_exit = True  # type: ignore[attr-defined]

        for task in reversed(self._background_tasks):
            if task.done():
                continue
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("component stop timed out", component=task.get_name(), timeout=_SHUTDOWN_GRACE_SECONDS)
                task.cancel()
            except Exception as exc:
                log.error("component stop raised an error", component=task.get_name(), error=str(exc))
        self._background_tasks.clear()
        self._rest_server = None

        log.info("streamrouter stopped")


def _version() -> str:
    from streamrouter import __version__

    return __version__


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = StreamRouterApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app._running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app._running:
            await app.stop()


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())
