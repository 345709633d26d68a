"""Entry point for `python -m streamrouter`.

Usage:
    STREAMROUTER_ROUTER=myservice.handlers:router python -m streamrouter
"""

from __future__ import annotations

from streamrouter.app import run

run()
