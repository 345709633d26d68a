"""REST API layer for streamrouter.

Exposes:
    create_app -- FastAPI application factory.
"""

from streamrouter.api.app import create_app

__all__ = ["create_app"]
