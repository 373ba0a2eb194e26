"""Rule kind descriptions, config templates, and default rule suggestions."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from sxn.detector import detect_package_manager, detect_project_type, detect_sensitive_files
from sxn.rules.registry import RULE_KINDS

JS_TYPES = ("javascript", "typescript", "nodejs", "nextjs", "react")
PYTHON_TYPES = ("python", "django")

_KIND_EXAMPLES: dict[str, dict[str, Any]] = {
    "copy_files": {"source": "config/master.key", "strategy": "copy"},
    "setup_commands": {"command": ["bundle", "install"]},
    "template": {"source": ".sxn/templates/README.md", "destination": "README.md"},
}

_CONFIG_KEYS = {
    "copy_files": "files",
    "setup_commands": "commands",
    "template": "templates",
}

_KEY_FILE = re.compile(r"\.(key|pem|p12|jks)$")


def describe_rule_kinds() -> list[dict[str, Any]]:
    return [
        {
            "name": kind,
            "description": rule_cls.description,
            "example": _KIND_EXAMPLES.get(kind, {}),
        }
        for kind, rule_cls in sorted(RULE_KINDS.items())
    ]


def generate_rule_template(kind: str, project_type: str | None = None) -> dict[str, Any]:
    """A starter rule spec for ``kind``, tailored to ``project_type`` where known."""
    if kind == "copy_files":
        entries = _copy_files_template(project_type)
    elif kind == "setup_commands":
        entries = _setup_commands_template(project_type)
    elif kind == "template":
        entries = [
            {
                "source": ".sxn/templates/session-info.md",
                "destination": "SESSION_INFO.md",
                "required": False,
            }
        ]
    else:
        raise ValueError(
            f"Unknown rule kind: {kind}. Available: {', '.join(sorted(RULE_KINDS))}"
        )
    return {"type": kind, "config": {_CONFIG_KEYS[kind]: entries}}


def _copy_files_template(project_type: str | None) -> list[dict[str, Any]]:
    if project_type == "rails":
        return [
            {"source": "config/master.key", "strategy": "copy"},
            {"source": ".env", "strategy": "copy"},
            {"source": ".env.development", "strategy": "copy"},
        ]
    if project_type in JS_TYPES:
        return [
            {"source": ".env", "strategy": "copy"},
            {"source": ".env.local", "strategy": "copy"},
            {"source": ".npmrc", "strategy": "copy"},
        ]
    return [{"source": "path/to/file", "strategy": "copy"}]


def _setup_commands_template(project_type: str | None) -> list[dict[str, Any]]:
    if project_type == "rails":
        return [
            {"command": ["bundle", "install"]},
            {"command": ["bin/rails", "db:create"]},
            {"command": ["bin/rails", "db:migrate"]},
        ]
    if project_type in JS_TYPES:
        return [{"command": ["npm", "install"]}]
    if project_type in PYTHON_TYPES:
        return [{"command": ["pip", "install", "-r", "requirements.txt"]}]
    return [{"command": ["make", "setup"]}]


def suggest_default_rules(project_root: str | Path) -> dict[str, dict[str, Any]]:
    """Inspect a project and propose a rule set for new sessions.

    Empty suggestions are left out. Setup commands depend on copied files so
    that credentials are in place before installers run.
    """
    root = Path(project_root)
    project_type = detect_project_type(root)
    package_manager = detect_package_manager(root)

    rules: dict[str, dict[str, Any]] = {}
    files = _suggest_files(root, project_type)
    if files:
        rules["copy_files"] = {"type": "copy_files", "config": {"files": files}}

    commands = _suggest_commands(project_type, package_manager)
    if commands:
        rules["setup_commands"] = {
            "type": "setup_commands",
            "config": {"commands": commands},
            "dependencies": ["copy_files"] if "copy_files" in rules else [],
        }

    rules["templates"] = {
        "type": "template",
        "config": {"templates": _suggest_templates(project_type)},
    }
    return rules


def _suggest_files(root: Path, project_type: str) -> list[dict[str, Any]]:
    files: list[dict[str, Any]] = []
    if project_type == "rails":
        files += [
            {"source": "config/master.key", "strategy": "copy", "required": False},
            {"source": ".env", "strategy": "symlink", "required": False},
            {"source": ".env.development", "strategy": "symlink", "required": False},
        ]
    elif project_type in JS_TYPES:
        files += [
            {"source": ".env", "strategy": "symlink", "required": False},
            {"source": ".env.local", "strategy": "symlink", "required": False},
            {"source": ".npmrc", "strategy": "copy", "required": False},
        ]
    elif project_type in PYTHON_TYPES:
        files += [
            {"source": ".env", "strategy": "symlink", "required": False},
            {"source": "secrets.yml", "strategy": "copy", "required": False},
        ]

    known = {f["source"] for f in files}
    for sensitive in detect_sensitive_files(root):
        if sensitive in known:
            continue
        strategy = "copy" if _KEY_FILE.search(sensitive) else "symlink"
        files.append({"source": sensitive, "strategy": strategy, "required": False})
    return files


def _suggest_commands(project_type: str, package_manager: str) -> list[dict[str, Any]]:
    commands: list[dict[str, Any]] = []
    match package_manager:
        case "bundler":
            commands.append({"command": ["bundle", "install"], "description": "Install Ruby dependencies"})
            if project_type == "rails":
                commands.append(
                    {
                        "command": ["bin/rails", "db:create"],
                        "condition": "file_missing:db/development.sqlite3",
                        "description": "Create database",
                    }
                )
                commands.append(
                    {"command": ["bin/rails", "db:migrate"], "description": "Run database migrations"}
                )
        case "npm" | "yarn":
            commands.append(
                {"command": [package_manager, "install"], "description": "Install Node.js dependencies"}
            )
            build = ["npm", "run", "build"] if package_manager == "npm" else ["yarn", "build"]
            commands.append(
                {
                    "command": build,
                    "condition": "file_exists:package.json",
                    "required": False,
                    "description": "Build project",
                }
            )
        case "pnpm":
            commands.append({"command": ["pnpm", "install"], "description": "Install Node.js dependencies"})
        case "pip":
            commands.append(
                {
                    "command": ["pip", "install", "-r", "requirements.txt"],
                    "description": "Install Python dependencies",
                }
            )
        case "pipenv" | "poetry":
            commands.append(
                {"command": [package_manager, "install"], "description": "Install Python dependencies"}
            )
    return commands


def _suggest_templates(project_type: str) -> list[dict[str, Any]]:
    templates: list[dict[str, Any]] = [
        {
            "source": ".sxn/templates/session-info.md",
            "destination": "SESSION_INFO.md",
            "required": False,
        }
    ]
    if project_type == "rails":
        templates.append(
            {"source": ".sxn/templates/rails/CLAUDE.md", "destination": "CLAUDE.md", "required": False}
        )
    elif project_type in JS_TYPES:
        templates.append(
            {
                "source": ".sxn/templates/javascript/README.md",
                "destination": "README.md",
                "required": False,
                "overwrite": False,
            }
        )
    return templates
