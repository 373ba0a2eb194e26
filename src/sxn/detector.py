"""Project type and package manager detection heuristics."""

from __future__ import annotations

import json
from pathlib import Path

SKIP_DIRS = {
    "node_modules",
    ".git",
    "dist",
    "build",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    "coverage",
}

# Checked in order; first hit wins.
PACKAGE_MANAGERS: list[tuple[str, tuple[str, ...]]] = [
    ("bundler", ("Gemfile.lock", "Gemfile")),
    ("pnpm", ("pnpm-lock.yaml",)),
    ("yarn", ("yarn.lock",)),
    ("npm", ("package-lock.json",)),
    ("poetry", ("poetry.lock",)),
    ("pipenv", ("Pipfile.lock", "Pipfile")),
    ("pip", ("requirements.txt",)),
    ("cargo", ("Cargo.lock", "Cargo.toml")),
    ("go", ("go.mod",)),
]

SENSITIVE_CANDIDATES = (
    "config/master.key",
    ".env",
    ".npmrc",
    "auth_token",
    "api_key",
)
SENSITIVE_GLOBS = (
    "config/credentials/*.key",
    ".env.*",
    "*.pem",
    "*.p12",
    "*.jks",
)


def _read_package_json(root: Path) -> dict:
    try:
        data = json.loads((root / "package.json").read_text())
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _js_dependencies(root: Path) -> set[str]:
    data = _read_package_json(root)
    deps: set[str] = set()
    for key in ("dependencies", "devDependencies", "peerDependencies"):
        section = data.get(key)
        if isinstance(section, dict):
            deps.update(section)
    return deps


def _file_contains(path: Path, needle: str) -> bool:
    try:
        return needle.lower() in path.read_text().lower()
    except OSError:
        return False


def detect_project_type(root: str | Path) -> str:
    """Classify a project directory: rails, ruby, nextjs, react, typescript,
    nodejs, javascript, django, python, go, rust or unknown."""
    root = Path(root)
    if not root.is_dir():
        return "unknown"

    if (root / "Gemfile").exists():
        if (root / "config" / "application.rb").exists() or _file_contains(
            root / "Gemfile", "rails"
        ):
            return "rails"
        return "ruby"
    if any(root.glob("*.gemspec")):
        return "ruby"

    if (root / "package.json").exists():
        deps = _js_dependencies(root)
        if "next" in deps:
            return "nextjs"
        if "react" in deps:
            return "react"
        if (root / "tsconfig.json").exists():
            return "typescript"
        if deps & {"express", "fastify", "koa", "@types/node", "nodemon"}:
            return "nodejs"
        return "javascript"

    if (root / "manage.py").exists() and _file_contains(root / "requirements.txt", "django"):
        return "django"
    if any((root / f).exists() for f in ("requirements.txt", "setup.py", "pyproject.toml", "Pipfile")):
        return "python"
    if (root / "go.mod").exists():
        return "go"
    if (root / "Cargo.toml").exists():
        return "rust"
    return "unknown"


def detect_package_manager(root: str | Path) -> str:
    root = Path(root)
    for manager, markers in PACKAGE_MANAGERS:
        if any((root / m).exists() for m in markers):
            return manager
    if (root / "package.json").exists():
        return "npm"
    return "unknown"


def detect_sensitive_files(root: str | Path) -> list[str]:
    """Relative paths of files that usually hold secrets and should follow a session."""
    root = Path(root)
    found: set[str] = set()
    for candidate in SENSITIVE_CANDIDATES:
        if (root / candidate).is_file():
            found.add(candidate)
    for pattern in SENSITIVE_GLOBS:
        for match in root.glob(pattern):
            rel = match.relative_to(root)
            if match.is_file() and not SKIP_DIRS.intersection(rel.parts):
                found.add(rel.as_posix())
    return sorted(found)
