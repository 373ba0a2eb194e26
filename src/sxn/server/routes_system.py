"""System routes: health, version, and the sessions this server has provisioned."""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from sxn import __version__ as VERSION
from sxn.rules.engine import RulesEngine


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "project_root": request.app.state.project_root})


async def version(request: Request) -> JSONResponse:
    return JSONResponse({"version": VERSION})


async def sessions(request: Request) -> JSONResponse:
    """GET /api/sessions: applied rules per session root, oldest first."""
    engines: dict[str, RulesEngine] = request.app.state.engines
    return JSONResponse(
        {
            "sessions": [
                {
                    "session_root": session_root,
                    "project_root": str(engine.project_root),
                    "applied_rules": [r.name for r in engine.applied_rules],
                }
                for session_root, engine in engines.items()
            ]
        }
    )


routes = [
    Route("/health", health),
    Route("/api/version", version),
    Route("/api/sessions", sessions),
]
