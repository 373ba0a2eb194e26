"""Starlette app factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from starlette.applications import Starlette

from sxn.server.routes_rules import routes as rules_routes
from sxn.server.routes_system import routes as system_routes


def create_app(project_root: str | Path | None = None) -> Starlette:
    """Create the HTTP API app. Rule engines live in app.state.engines.

    When ``project_root`` is given, requests that omit it fall back to it.
    """

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        yield
        app.state.engines.clear()

    app = Starlette(routes=system_routes + rules_routes, lifespan=lifespan)
    app.state.engines = {}
    app.state.project_root = str(Path(project_root).resolve()) if project_root else None
    return app
