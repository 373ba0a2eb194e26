"""Git worktree handler for session directories.

A session is a directory holding one worktree per project:
<session_path>/<project_name>/. All git calls go through _run_git(), which is
the single mock target in tests.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from sxn.rules.config import CONFIG_FILENAME, load_engine_config, load_rule_specs
from sxn.rules.engine import RulesEngine

logger = logging.getLogger(__name__)


class WorktreeError(Exception):
    """Raised when a git worktree operation fails."""


def _run_git(
    args: list[str],
    *,
    cwd: str | Path | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a git command, raising WorktreeError if git cannot be run at all."""
    try:
        return subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            timeout=30,
            cwd=cwd,
        )
    except FileNotFoundError:
        raise WorktreeError("git binary not found")
    except subprocess.TimeoutExpired:
        raise WorktreeError(f"git {args[0]} timed out")


def worktree_dir(project_root: str | Path, session_path: str | Path) -> Path:
    """Convention: <session_path>/<project directory name>/"""
    return Path(session_path) / Path(project_root).name


def _parse_porcelain(output: str) -> list[dict[str, object]]:
    entries: list[dict[str, object]] = []
    current: dict[str, object] | None = None
    for line in output.splitlines():
        if line.startswith("worktree "):
            current = {"path": line[len("worktree ") :].strip(), "branch": None, "head": None}
            entries.append(current)
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current["head"] = line[len("HEAD ") :].strip()
        elif line.startswith("branch "):
            current["branch"] = line[len("branch ") :].strip().removeprefix("refs/heads/")
        elif line == "detached":
            current["branch"] = None
    return entries


def list_worktrees(project_root: str | Path) -> list[dict[str, object]]:
    """All worktrees of the project repository, main checkout included."""
    result = _run_git(["worktree", "list", "--porcelain"], cwd=project_root)
    if result.returncode != 0:
        raise WorktreeError(f"worktree list failed: {result.stderr.strip()}")
    entries = _parse_porcelain(result.stdout)
    for entry in entries:
        entry["exists"] = Path(str(entry["path"])).is_dir()
    return entries


def detect(project_root: str | Path, session_path: str | Path) -> dict[str, object]:
    """Check whether the project has a worktree in the session. Returns: found, path, branch."""
    target = str(worktree_dir(project_root, session_path).resolve())
    for entry in list_worktrees(project_root):
        if str(Path(str(entry["path"])).resolve()) == target:
            return {"found": True, "path": entry["path"], "branch": entry["branch"]}
    return {"found": False, "path": None, "branch": None}


def create(
    project_root: str | Path,
    session_path: str | Path,
    *,
    branch: str | None = None,
    apply_rules: bool = False,
) -> dict[str, object]:
    """Add a worktree for the project to the session, optionally provisioning it.

    The branch defaults to the session name and is created if it does not exist.
    With apply_rules, the project's .sxn.json rules run against the new worktree;
    the report is included in the result.
    """
    project_root = Path(project_root)
    session_path = Path(session_path)
    worktree_path = worktree_dir(project_root, session_path)
    branch = branch or session_path.name

    if worktree_path.exists():
        raise WorktreeError(f"worktree path already exists: {worktree_path}")
    session_path.mkdir(parents=True, exist_ok=True)

    exists = _run_git(
        ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"],
        cwd=project_root,
    )
    if exists.returncode == 0:
        args = ["worktree", "add", str(worktree_path), branch]
    else:
        args = ["worktree", "add", "-b", branch, str(worktree_path)]
    add_result = _run_git(args, cwd=project_root)
    if add_result.returncode != 0:
        if worktree_path.exists():
            shutil.rmtree(worktree_path)
        raise WorktreeError(f"worktree add failed: {add_result.stderr.strip()}")
    logger.info("Created worktree %s on branch %s", worktree_path, branch)

    result: dict[str, object] = {
        "project": project_root.name,
        "path": str(worktree_path),
        "branch": branch,
        "session": session_path.name,
        "created_branch": exists.returncode != 0,
    }
    if apply_rules:
        result["rules"] = provision(project_root, worktree_path)
    return result


def provision(project_root: str | Path, worktree_path: str | Path) -> dict[str, object]:
    """Apply the project's configured rules to a worktree; returns the report dict."""
    config_path = Path(project_root) / CONFIG_FILENAME
    if not config_path.exists():
        logger.info("No %s in %s; nothing to provision", CONFIG_FILENAME, project_root)
        return {"success": True, "total_rules": 0}
    specs = load_rule_specs(config_path)
    options = load_engine_config(config_path).to_options()
    engine = RulesEngine(project_root, worktree_path)
    return engine.apply_rules(specs, options).to_report().model_dump()


def remove(project_root: str | Path, session_path: str | Path) -> dict[str, object]:
    """Remove the project's worktree from the session. Errors captured in return dict."""
    worktree_path = worktree_dir(project_root, session_path)
    remove_result = _run_git(
        ["worktree", "remove", "--force", str(worktree_path)],
        cwd=project_root,
    )
    removed = remove_result.returncode == 0
    if worktree_path.exists():
        shutil.rmtree(worktree_path)
        _ = _run_git(["worktree", "prune"], cwd=project_root)
        removed = True
    return {
        "removed": removed,
        "path": str(worktree_path),
        "error": None if remove_result.returncode == 0 else remove_result.stderr.strip(),
    }
