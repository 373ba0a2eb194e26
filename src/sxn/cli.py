"""CLI entry point for sxn."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn, cast

from sxn import __version__
from sxn.mcp_server.server import main as mcp_main
from sxn.rules.config import CONFIG_FILENAME, load_engine_config, load_rule_specs
from sxn.rules.engine import RulesEngine
from sxn.rules.errors import ValidationError
from sxn.rules.suggest import describe_rule_kinds, generate_rule_template, suggest_default_rules
from sxn.server.runner import run_server


def _fail(message: str) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2))


def _load_specs(args: argparse.Namespace) -> dict[str, object]:
    project = cast(Path, args.project)
    config_path = cast(Path | None, args.config) or project / CONFIG_FILENAME
    if not config_path.exists():
        _fail(f"config file not found: {config_path}")
    try:
        return load_rule_specs(config_path)
    except ValueError as e:
        _fail(str(e))


def _engine(args: argparse.Namespace) -> RulesEngine:
    try:
        return RulesEngine(cast(Path, args.project), cast(Path, args.session))
    except ValueError as e:
        _fail(str(e))


def _cmd_rules_apply(args: argparse.Namespace) -> None:
    specs = _load_specs(args)
    project = cast(Path, args.project)
    config_path = cast(Path | None, args.config) or project / CONFIG_FILENAME
    engine_config = load_engine_config(config_path)
    if args.sequential:
        engine_config.parallel = False
    if args.continue_on_failure:
        engine_config.continue_on_failure = True
    if args.max_parallelism is not None:
        if args.max_parallelism < 1:
            _fail("--max-parallelism must be at least 1")
        engine_config.max_parallelism = cast(int, args.max_parallelism)

    result = _engine(args).apply_rules(specs, engine_config.to_options())
    _print_json(result.to_report().model_dump())
    if not result.success:
        sys.exit(1)


def _cmd_rules_validate(args: argparse.Namespace) -> None:
    specs = _load_specs(args)
    try:
        rules = _engine(args).validate_rules_config(specs)
    except ValidationError as e:
        _fail(str(e))
    print(f"Valid: {len(rules)} rule(s)")
    for rule in rules:
        deps = f" (after {', '.join(rule.dependencies)})" if rule.dependencies else ""
        print(f"  {rule.name} [{rule.kind}]{deps}")


def _cmd_rules_kinds(_args: argparse.Namespace) -> None:
    for kind in describe_rule_kinds():
        print(f"{kind['name']:<16} {kind['description']}")


def _cmd_rules_template(args: argparse.Namespace) -> None:
    try:
        template = generate_rule_template(cast(str, args.kind), args.project_type)
    except ValueError as e:
        _fail(str(e))
    _print_json(template)


def _cmd_rules_suggest(args: argparse.Namespace) -> None:
    project = cast(Path, args.project)
    if not project.is_dir():
        _fail(f"project directory not found: {project}")
    _print_json({"rules": suggest_default_rules(project)})


def _cmd_rules(args: argparse.Namespace) -> None:
    dispatch = {
        "apply": _cmd_rules_apply,
        "validate": _cmd_rules_validate,
        "kinds": _cmd_rules_kinds,
        "template": _cmd_rules_template,
        "suggest": _cmd_rules_suggest,
    }
    handler = dispatch.get(cast(str, args.rules_action or ""))
    if handler is None:
        _fail("missing rules action (apply, validate, kinds, template, suggest)")
    handler(args)


def _cmd_worktree(args: argparse.Namespace) -> None:
    from sxn import worktree
    from sxn.worktree import WorktreeError

    action = cast(str | None, args.worktree_action)
    try:
        if action == "add":
            result: object = worktree.create(
                args.project,
                args.session,
                branch=args.branch,
                apply_rules=args.apply_rules,
            )
        elif action == "remove":
            result = worktree.remove(args.project, args.session)
        elif action == "list":
            result = worktree.list_worktrees(args.project)
        elif action == "detect":
            result = worktree.detect(args.project, args.session)
        else:
            _fail("missing worktree action (add, remove, list, detect)")
    except (WorktreeError, ValueError) as e:
        _fail(str(e))
    _print_json(result)


def _cmd_serve(args: argparse.Namespace) -> None:
    run_server(cast(Path, args.project), port=cast(int | None, args.port))


def _cmd_mcp_serve(_args: argparse.Namespace) -> None:
    mcp_main()


def _add_roots(parser: argparse.ArgumentParser, *, session: bool = True) -> None:
    _ = parser.add_argument(
        "--project", type=Path, default=Path.cwd(), help="Project root (default: cwd)"
    )
    if session:
        _ = parser.add_argument(
            "--session", type=Path, required=True, help="Session directory or worktree"
        )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sxn",
        description="Session worktree provisioning with dependency-ordered rules",
    )
    _ = parser.add_argument("-V", "--version", action="version", version=f"sxn {__version__}")
    _ = parser.add_argument("-v", "--verbose", action="store_true", help="Log progress at INFO")
    subparsers = parser.add_subparsers(dest="command")

    # rules subcommand
    rules_p = subparsers.add_parser("rules", help="Validate and apply provisioning rules")
    rules_sub = rules_p.add_subparsers(dest="rules_action")
    ap = rules_sub.add_parser("apply", help="Apply the project's rules to a session")
    _add_roots(ap)
    _ = ap.add_argument(
        "--config", type=Path, default=None, help=f"Config file (default: {CONFIG_FILENAME})"
    )
    _ = ap.add_argument("--sequential", action="store_true", help="Run rules one at a time")
    _ = ap.add_argument(
        "--continue-on-failure",
        action="store_true",
        dest="continue_on_failure",
        help="Keep going after a rule fails; skip rollback",
    )
    _ = ap.add_argument(
        "--max-parallelism", type=int, default=None, dest="max_parallelism"
    )
    vp = rules_sub.add_parser("validate", help="Check rules without applying them")
    _add_roots(vp)
    _ = vp.add_argument("--config", type=Path, default=None)
    _ = rules_sub.add_parser("kinds", help="List rule kinds")
    tp = rules_sub.add_parser("template", help="Print a starter rule spec")
    _ = tp.add_argument("kind", help="Rule kind")
    _ = tp.add_argument("--project-type", default=None, dest="project_type")
    sp = rules_sub.add_parser("suggest", help="Suggest rules for a project")
    _add_roots(sp, session=False)

    # worktree subcommand
    wt_p = subparsers.add_parser("worktree", help="Git worktree operations")
    wt_sub = wt_p.add_subparsers(dest="worktree_action")
    wa = wt_sub.add_parser("add", help="Add the project's worktree to a session")
    _add_roots(wa)
    _ = wa.add_argument("--branch", default=None, help="Branch (default: session name)")
    _ = wa.add_argument(
        "--apply-rules",
        action="store_true",
        dest="apply_rules",
        help=f"Provision the new worktree from {CONFIG_FILENAME}",
    )
    wr = wt_sub.add_parser("remove", help="Remove the project's worktree from a session")
    _add_roots(wr)
    wl = wt_sub.add_parser("list", help="List the project's worktrees")
    _add_roots(wl, session=False)
    wd = wt_sub.add_parser("detect", help="Check for the project's worktree in a session")
    _add_roots(wd)

    # serve subcommand
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API server")
    _add_roots(serve_parser, session=False)
    _ = serve_parser.add_argument("--port", type=int, help="Override the configured port")

    # mcp-serve subcommand
    _ = subparsers.add_parser("mcp-serve", help="Start the MCP stdio server")

    args = parser.parse_args(sys.argv[1:])
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    dispatch = {
        "rules": _cmd_rules,
        "worktree": _cmd_worktree,
        "serve": _cmd_serve,
        "mcp-serve": _cmd_mcp_serve,
    }
    command = cast(str | None, args.command)
    handler = dispatch.get(command) if command is not None else None
    if handler:
        handler(args)
    else:
        parser.print_help()
        sys.exit(1)
