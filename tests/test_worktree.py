"""Tests for git worktree management. All git calls are mocked at _run_git."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from sxn import worktree
from sxn.worktree import WorktreeError

PORCELAIN = """worktree /repo/shop
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /sessions/feature-x/shop
HEAD 2222222222222222222222222222222222222222
branch refs/heads/feature-x

worktree /sessions/detached/shop
HEAD 3333333333333333333333333333333333333333
detached
"""


def _completed(returncode: int = 0, stdout: str = "", stderr: str = ""):
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeGit:
    """Records git calls and creates the worktree directory on 'worktree add'."""

    def __init__(self, *, branch_exists: bool = False, add_fails: bool = False):
        self.calls: list[list[str]] = []
        self.branch_exists = branch_exists
        self.add_fails = add_fails

    def __call__(self, args, *, cwd=None):
        self.calls.append(list(args))
        if args[0] == "show-ref":
            return _completed(0 if self.branch_exists else 1)
        if args[:2] == ["worktree", "add"]:
            path = Path(args[-1] if "-b" in args else args[2])
            path.mkdir(parents=True)
            if self.add_fails:
                return _completed(128, stderr="fatal: invalid reference")
            return _completed()
        return _completed()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "shop"
    root.mkdir()
    return root


class TestRunGit:
    def test_missing_git(self, tmp_path: Path):
        with patch("sxn.worktree.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(WorktreeError, match="git binary not found"):
                _ = worktree._run_git(["status"], cwd=tmp_path)

    def test_timeout(self, tmp_path: Path):
        with patch(
            "sxn.worktree.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="git", timeout=30),
        ):
            with pytest.raises(WorktreeError, match="timed out"):
                _ = worktree._run_git(["fetch"], cwd=tmp_path)


class TestListAndDetect:
    def test_worktree_dir(self, tmp_path: Path):
        assert worktree.worktree_dir("/repo/shop", tmp_path / "s1") == tmp_path / "s1" / "shop"

    def test_list_parses_porcelain(self, repo: Path):
        with patch("sxn.worktree._run_git", return_value=_completed(stdout=PORCELAIN)):
            entries = worktree.list_worktrees(repo)
        assert [e["branch"] for e in entries] == ["main", "feature-x", None]
        assert entries[0]["head"].startswith("1111")
        assert entries[1]["exists"] is False

    def test_list_failure(self, repo: Path):
        with patch("sxn.worktree._run_git", return_value=_completed(128, stderr="not a repo")):
            with pytest.raises(WorktreeError, match="not a repo"):
                _ = worktree.list_worktrees(repo)

    def test_detect_found(self, tmp_path: Path):
        session = tmp_path / "feature-x"
        porcelain = f"worktree {session / 'shop'}\nHEAD abc\nbranch refs/heads/feature-x\n"
        with patch("sxn.worktree._run_git", return_value=_completed(stdout=porcelain)):
            result = worktree.detect(tmp_path / "shop", session)
        assert result == {"found": True, "path": str(session / "shop"), "branch": "feature-x"}

    def test_detect_missing(self, repo: Path, tmp_path: Path):
        with patch("sxn.worktree._run_git", return_value=_completed(stdout=PORCELAIN)):
            result = worktree.detect(repo, tmp_path / "other")
        assert result["found"] is False


class TestCreate:
    def test_creates_new_branch_named_after_session(self, repo: Path, tmp_path: Path):
        git = FakeGit()
        session = tmp_path / "sessions" / "feature-x"
        with patch("sxn.worktree._run_git", side_effect=git):
            result = worktree.create(repo, session)
        assert git.calls[-1] == ["worktree", "add", "-b", "feature-x", str(session / "shop")]
        assert result["branch"] == "feature-x"
        assert result["created_branch"] is True
        assert result["session"] == "feature-x"
        assert "rules" not in result

    def test_checks_out_existing_branch(self, repo: Path, tmp_path: Path):
        git = FakeGit(branch_exists=True)
        session = tmp_path / "s1"
        with patch("sxn.worktree._run_git", side_effect=git):
            result = worktree.create(repo, session, branch="develop")
        assert git.calls[0] == ["show-ref", "--verify", "--quiet", "refs/heads/develop"]
        assert git.calls[-1] == ["worktree", "add", str(session / "shop"), "develop"]
        assert result["created_branch"] is False

    def test_existing_path_rejected(self, repo: Path, tmp_path: Path):
        (tmp_path / "s1" / "shop").mkdir(parents=True)
        with patch("sxn.worktree._run_git") as mock_git:
            with pytest.raises(WorktreeError, match="already exists"):
                _ = worktree.create(repo, tmp_path / "s1")
        mock_git.assert_not_called()

    def test_failed_add_cleans_up(self, repo: Path, tmp_path: Path):
        git = FakeGit(add_fails=True)
        with patch("sxn.worktree._run_git", side_effect=git):
            with pytest.raises(WorktreeError, match="invalid reference"):
                _ = worktree.create(repo, tmp_path / "s1")
        assert not (tmp_path / "s1" / "shop").exists()

    def test_apply_rules_provisions_worktree(self, repo: Path, tmp_path: Path):
        _ = (repo / ".env").write_text("A=1")
        config = {
            "rules_engine": {"parallel": False},
            "rules": {"env": {"type": "copy_files", "config": {"files": [{"source": ".env"}]}}},
        }
        _ = (repo / ".sxn.json").write_text(json.dumps(config))
        with patch("sxn.worktree._run_git", side_effect=FakeGit()):
            result = worktree.create(repo, tmp_path / "s1", apply_rules=True)
        assert result["rules"]["success"] is True
        assert result["rules"]["applied_rules"] == ["env"]
        assert (tmp_path / "s1" / "shop" / ".env").read_text() == "A=1"

    def test_apply_rules_without_config(self, repo: Path, tmp_path: Path):
        with patch("sxn.worktree._run_git", side_effect=FakeGit()):
            result = worktree.create(repo, tmp_path / "s1", apply_rules=True)
        assert result["rules"] == {"success": True, "total_rules": 0}


class TestRemove:
    def test_remove_success(self, repo: Path, tmp_path: Path):
        with patch("sxn.worktree._run_git", return_value=_completed()) as mock_git:
            result = worktree.remove(repo, tmp_path / "s1")
        assert result["removed"] is True
        assert result["error"] is None
        assert mock_git.call_args_list[0].args[0][:3] == ["worktree", "remove", "--force"]

    def test_remove_falls_back_to_rmtree(self, repo: Path, tmp_path: Path):
        leftover = tmp_path / "s1" / "shop"
        leftover.mkdir(parents=True)
        _ = (leftover / "file.txt").write_text("x")
        with patch(
            "sxn.worktree._run_git",
            side_effect=[_completed(128, stderr="not a working tree"), _completed()],
        ) as mock_git:
            result = worktree.remove(repo, tmp_path / "s1")
        assert not leftover.exists()
        assert result["removed"] is True
        assert result["error"] == "not a working tree"
        assert mock_git.call_args_list[1].args[0] == ["worktree", "prune"]

    def test_remove_nothing_there(self, repo: Path, tmp_path: Path):
        with patch("sxn.worktree._run_git", return_value=_completed(128, stderr="no such")):
            result = worktree.remove(repo, tmp_path / "s1")
        assert result["removed"] is False
