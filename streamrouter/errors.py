"""Exception types raised by the router layer.

The diff engine and match predicate never raise; everything here belongs to
registration, configuration and deferred-message handling.
"""

from __future__ import annotations


class StreamRouterError(Exception):
    """Base class for all streamrouter errors."""


class ConfigurationError(StreamRouterError):
    """Raised eagerly when a router or handler is configured incorrectly."""


class DeferredHandlerNotFoundError(StreamRouterError):
    """Raised when a deferred message names a handler this router does not own."""

    def __init__(self, handler_id: str) -> None:
        super().__init__(f"Deferred handler not found: {handler_id}")
        self.handler_id = handler_id
