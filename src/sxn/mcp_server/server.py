"""MCP stdio server exposing the rules engine as tools."""

from __future__ import annotations

import json
import logging

import anyio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server

from sxn import __version__
from sxn.rules.engine import RulesEngine
from sxn.rules.errors import ValidationError
from sxn.rules.models import ExecutionOptions
from sxn.rules.suggest import describe_rule_kinds, generate_rule_template, suggest_default_rules

logger = logging.getLogger(__name__)

_ROOTS = {
    "project_root": {"type": "string", "description": "Absolute path of the source project"},
    "session_root": {"type": "string", "description": "Absolute path of the session worktree"},
}

_RULES = {
    "type": "object",
    "description": "Map of rule name to {type, config, dependencies}",
}

LIST_RULE_KINDS_SCHEMA = {
    "type": "object",
    "properties": {},
}

VALIDATE_RULES_SCHEMA = {
    "type": "object",
    "properties": {**_ROOTS, "rules": _RULES},
    "required": ["project_root", "session_root", "rules"],
}

APPLY_RULES_SCHEMA = {
    "type": "object",
    "properties": {
        **_ROOTS,
        "rules": _RULES,
        "parallel": {"type": "boolean", "default": True},
        "max_parallelism": {"type": "integer", "minimum": 1, "default": 4},
        "continue_on_failure": {"type": "boolean", "default": False},
    },
    "required": ["project_root", "session_root", "rules"],
}

RULE_TEMPLATE_SCHEMA = {
    "type": "object",
    "properties": {
        "kind": {"type": "string", "enum": ["copy_files", "setup_commands", "template"]},
        "project_type": {"type": "string", "description": "e.g. rails, javascript, python"},
    },
    "required": ["kind"],
}

SUGGEST_RULES_SCHEMA = {
    "type": "object",
    "properties": {"project_root": _ROOTS["project_root"]},
    "required": ["project_root"],
}


def _validate(args: dict) -> dict[str, object]:
    engine = RulesEngine(args["project_root"], args["session_root"])
    try:
        rules = engine.validate_rules_config(args.get("rules", {}))
    except ValidationError as e:
        return {"valid": False, "error": str(e)}
    return {"valid": True, "rules": [r.name for r in rules]}


def _apply(args: dict) -> dict[str, object]:
    engine = RulesEngine(args["project_root"], args["session_root"])
    options = ExecutionOptions(
        parallel=args.get("parallel", True),
        max_parallelism=args.get("max_parallelism", 4),
        continue_on_failure=args.get("continue_on_failure", False),
    )
    return engine.apply_rules(args.get("rules", {}), options).to_report().model_dump()


def create_mcp_server() -> Server:
    """Create and configure the MCP server with the rules tool handlers."""
    server = Server("sxn-rules", __version__)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name="list_rule_kinds",
                description="List available rule kinds with a config example for each.",
                inputSchema=LIST_RULE_KINDS_SCHEMA,
            ),
            types.Tool(
                name="validate_rules",
                description="Check a rule set for bad config, unknown dependencies and cycles.",
                inputSchema=VALIDATE_RULES_SCHEMA,
            ),
            types.Tool(
                name="apply_rules",
                description=(
                    "Apply a rule set to a session worktree. "
                    "Rolls back on failure unless continue_on_failure is set."
                ),
                inputSchema=APPLY_RULES_SCHEMA,
            ),
            types.Tool(
                name="rule_template",
                description="Generate a starter rule spec for a rule kind.",
                inputSchema=RULE_TEMPLATE_SCHEMA,
            ),
            types.Tool(
                name="suggest_rules",
                description="Detect the project type and suggest a default rule set.",
                inputSchema=SUGGEST_RULES_SCHEMA,
            ),
        ]

    @server.call_tool()
    async def call_tool(
        name: str,
        arguments: dict | None,
    ) -> list[types.TextContent]:
        args = arguments or {}
        try:
            if name == "list_rule_kinds":
                result: object = {"kinds": describe_rule_kinds()}
            elif name == "validate_rules":
                result = await anyio.to_thread.run_sync(_validate, args)
            elif name == "apply_rules":
                result = await anyio.to_thread.run_sync(_apply, args)
            elif name == "rule_template":
                result = generate_rule_template(args["kind"], args.get("project_type"))
            elif name == "suggest_rules":
                result = {"rules": suggest_default_rules(args["project_root"])}
            else:
                return [types.TextContent(type="text", text=f"Unknown tool: {name}")]
        except (KeyError, ValueError) as e:
            logger.warning("Tool %s rejected arguments: %s", name, e)
            result = {"error": str(e)}
        return [types.TextContent(type="text", text=json.dumps(result, indent=2))]

    return server


async def run_mcp_server() -> None:
    """Run the MCP server with stdio transport."""
    server = create_mcp_server()
    async with stdio_server() as (read_stream, write_stream):
        init_options = server.create_initialization_options(
            notification_options=NotificationOptions(),
        )
        await server.run(read_stream, write_stream, init_options)


def main() -> None:
    anyio.run(run_mcp_server)
