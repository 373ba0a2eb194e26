"""Variables made available to session templates."""

from __future__ import annotations

import getpass
import logging
import platform
import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sxn.detector import detect_package_manager, detect_project_type

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 5


def _git_output(args: list[str], cwd: Path) -> str | None:
    """Return stripped stdout of a git command, or None if git is unavailable or fails."""
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            cwd=cwd,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug("git %s unavailable: %s", args[0], e)
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


class TemplateVariables:
    """Collect session, project, git, user and environment variables."""

    def __init__(self, project_root: str | Path, session_root: str | Path) -> None:
        self.project_root = Path(project_root)
        self.session_root = Path(session_root)

    def build(self, custom: dict[str, Any] | None = None) -> dict[str, Any]:
        """All variable groups, with ``custom`` merged over the top level."""
        now = datetime.now(UTC)
        variables: dict[str, Any] = {
            "session": {
                "name": self.session_root.name,
                "path": str(self.session_root),
            },
            "project": {
                "name": self.project_root.name,
                "path": str(self.project_root),
                "type": detect_project_type(self.project_root),
                "package_manager": detect_package_manager(self.project_root),
            },
            "git": self._git(),
            "user": {"name": _username()},
            "environment": {
                "python": platform.python_version(),
                "platform": platform.system().lower(),
                "arch": platform.machine(),
            },
            "timestamp": {
                "now": now.isoformat(),
                "today": now.strftime("%Y-%m-%d"),
                "year": now.year,
                "epoch": int(now.timestamp()),
            },
        }
        for key, value in (custom or {}).items():
            if isinstance(value, dict) and isinstance(variables.get(key), dict):
                variables[key] = {**variables[key], **value}
            else:
                variables[key] = value
        return variables

    def _git(self) -> dict[str, Any]:
        cwd = self.session_root if self.session_root.is_dir() else self.project_root
        branch = _git_output(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
        if branch is None:
            return {"available": False}
        return {
            "available": True,
            "branch": branch,
            "commit": _git_output(["rev-parse", "--short", "HEAD"], cwd),
            "author": {
                "name": _git_output(["config", "user.name"], cwd),
                "email": _git_output(["config", "user.email"], cwd),
            },
        }


def _username() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
