"""Rules routes: list kinds, suggest, validate, apply, and roll back rule sets."""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from sxn.rules.engine import RulesEngine
from sxn.rules.errors import ValidationError
from sxn.rules.models import ExecutionOptions
from sxn.rules.suggest import describe_rule_kinds, suggest_default_rules


def _engine_for(request: Request, project_root: str, session_root: str) -> RulesEngine:
    """Engines are kept per session root so a later rollback can undo an earlier apply."""
    engines: dict[str, RulesEngine] = request.app.state.engines
    key = str(Path(session_root).resolve())
    engine = engines.get(key)
    if engine is None or engine.project_root != Path(project_root).resolve():
        engine = RulesEngine(project_root, session_root)
        engines[key] = engine
    return engine


async def _read_body(request: Request) -> dict | JSONResponse:
    try:
        body = await request.json()
    except Exception:
        return JSONResponse({"error": "Invalid JSON"}, status_code=422)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Body must be a JSON object"}, status_code=422)
    if not body.get("project_root") and request.app.state.project_root:
        body["project_root"] = request.app.state.project_root
    for field in ("project_root", "session_root"):
        if not body.get(field):
            return JSONResponse({"error": f"{field} is required"}, status_code=422)
    if not isinstance(body.get("rules", {}), dict):
        return JSONResponse({"error": "rules must be an object"}, status_code=422)
    return body


async def list_kinds(request: Request) -> JSONResponse:
    """GET /api/rules/kinds: available rule kinds with examples."""
    return JSONResponse({"kinds": describe_rule_kinds()})


async def suggest(request: Request) -> JSONResponse:
    """GET /api/rules/suggest?project_root=...: default rules for a project."""
    project_root = request.query_params.get("project_root")
    if not project_root:
        return JSONResponse({"error": "project_root is required"}, status_code=422)
    if not Path(project_root).is_dir():
        return JSONResponse({"error": f"not a directory: {project_root}"}, status_code=422)
    return JSONResponse({"rules": suggest_default_rules(project_root)})


async def validate(request: Request) -> JSONResponse:
    """POST /api/rules/validate: strict pre-flight check of a rule set."""
    body = await _read_body(request)
    if isinstance(body, JSONResponse):
        return body
    try:
        engine = RulesEngine(body["project_root"], body["session_root"])
        rules = await run_in_threadpool(engine.validate_rules_config, body.get("rules", {}))
    except (ValueError, TypeError, PydanticValidationError) as e:
        return JSONResponse({"error": str(e)}, status_code=422)
    except ValidationError as e:
        return JSONResponse({"valid": False, "error": str(e)})
    return JSONResponse({"valid": True, "rules": [r.name for r in rules]})


async def apply(request: Request) -> JSONResponse:
    """POST /api/rules/apply: apply a rule set to a session and report the outcome."""
    body = await _read_body(request)
    if isinstance(body, JSONResponse):
        return body
    try:
        options = ExecutionOptions.model_validate(body.get("options") or {})
        engine = _engine_for(request, body["project_root"], body["session_root"])
    except (ValueError, PydanticValidationError) as e:
        return JSONResponse({"error": str(e)}, status_code=422)
    result = await run_in_threadpool(engine.apply_rules, body.get("rules", {}), options)
    return JSONResponse(result.to_report().model_dump())


async def rollback(request: Request) -> JSONResponse:
    """POST /api/rules/rollback: undo rules applied to a session by this server."""
    try:
        body = await request.json()
    except Exception:
        return JSONResponse({"error": "Invalid JSON"}, status_code=422)
    session_root = body.get("session_root") if isinstance(body, dict) else None
    if not session_root:
        return JSONResponse({"error": "session_root is required"}, status_code=422)
    engine = request.app.state.engines.get(str(Path(session_root).resolve()))
    if engine is None:
        return JSONResponse({"error": "No rules applied to this session"}, status_code=404)
    rolled_back = [r.name for r in engine.applied_rules]
    ok = await run_in_threadpool(engine.rollback_rules)
    return JSONResponse({"rolled_back": ok, "rules": rolled_back})


routes = [
    Route("/api/rules/kinds", list_kinds),
    Route("/api/rules/suggest", suggest),
    Route("/api/rules/validate", validate, methods=["POST"]),
    Route("/api/rules/apply", apply, methods=["POST"]),
    Route("/api/rules/rollback", rollback, methods=["POST"]),
]
