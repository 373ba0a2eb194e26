"""Tests for the copy_files rule kind."""

import base64
import os
from pathlib import Path

import pytest

from sxn.rules.copy_files import CopyFilesRule, parse_permissions
from sxn.rules.errors import ApplicationError, ValidationError
from sxn.rules.models import ChangeType, RuleState
from sxn.security.file_copier import SecureFileCopier


@pytest.fixture
def project(project_root: Path) -> Path:
    (project_root / "config").mkdir()
    _ = (project_root / "config" / "master.key").write_text("s3cret")
    _ = (project_root / ".env").write_text("TOKEN=abc")
    return project_root


def _rule(project: Path, session: Path, files) -> CopyFilesRule:
    return CopyFilesRule("copy", {"files": files}, project, session)


def _apply(rule: CopyFilesRule) -> None:
    _ = rule.validate()
    _ = rule.apply()


class TestParsePermissions:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [("600", 0o600), ("0644", 0o644), (0o755, 0o755), ("999", None), ("1644", None), (True, None)],
    )
    def test_values(self, value, expected):
        assert parse_permissions(value) == expected


class TestValidation:
    def test_requires_files(self, project: Path, session_root: Path):
        rule = CopyFilesRule("copy", {}, project, session_root)
        with pytest.raises(ValidationError, match="requires 'files'"):
            _ = rule.validate()

    def test_files_must_be_array(self, project: Path, session_root: Path):
        with pytest.raises(ValidationError, match="must be an array"):
            _ = _rule(project, session_root, "config/master.key").validate()

    def test_files_cannot_be_empty(self, project: Path, session_root: Path):
        with pytest.raises(ValidationError, match="cannot be empty"):
            _ = _rule(project, session_root, []).validate()

    def test_invalid_strategy(self, project: Path, session_root: Path):
        files = [{"source": ".env", "strategy": "teleport"}]
        with pytest.raises(ValidationError, match="Invalid strategy 'teleport'"):
            _ = _rule(project, session_root, files).validate()

    def test_invalid_permissions(self, project: Path, session_root: Path):
        files = [{"source": ".env", "permissions": "rwx"}]
        with pytest.raises(ValidationError, match="invalid permissions"):
            _ = _rule(project, session_root, files).validate()

    def test_missing_required_source(self, project: Path, session_root: Path):
        files = [{"source": "config/database.yml"}]
        with pytest.raises(ValidationError, match="Required source file does not exist"):
            _ = _rule(project, session_root, files).validate()

    def test_missing_optional_source_is_valid(self, project: Path, session_root: Path):
        files = [{"source": "config/database.yml", "required": False}]
        assert _rule(project, session_root, files).validate() is True

    def test_destination_traversal_rejected(self, project: Path, session_root: Path):
        files = [{"source": ".env", "destination": "../escape.env"}]
        with pytest.raises(ValidationError, match="destination escapes the session"):
            _ = _rule(project, session_root, files).validate()


class TestApply:
    def test_copy_file(self, project: Path, session_root: Path):
        rule = _rule(project, session_root, [{"source": "config/master.key"}])
        _apply(rule)
        dest = session_root / "config" / "master.key"
        assert dest.read_text() == "s3cret"
        assert not dest.is_symlink()
        assert [c.type for c in rule.changes] == [
            ChangeType.DIRECTORY_CREATED,
            ChangeType.FILE_CREATED,
        ]
        assert rule.changes[-1].metadata["checksum"]

    def test_sensitive_file_gets_private_permissions(self, project: Path, session_root: Path):
        _apply(_rule(project, session_root, [{"source": "config/master.key"}]))
        mode = (session_root / "config" / "master.key").stat().st_mode & 0o777
        assert mode == 0o600

    def test_explicit_permissions(self, project: Path, session_root: Path):
        _apply(_rule(project, session_root, [{"source": ".env", "permissions": "0640"}]))
        assert (session_root / ".env").stat().st_mode & 0o777 == 0o640

    def test_symlink_strategy(self, project: Path, session_root: Path):
        rule = _rule(project, session_root, [{"source": ".env", "strategy": "symlink"}])
        _apply(rule)
        link = session_root / ".env"
        assert link.is_symlink()
        assert os.readlink(link) == str((project / ".env").resolve())
        assert rule.changes[0].type == ChangeType.SYMLINK_CREATED

    def test_custom_destination(self, project: Path, session_root: Path):
        _apply(_rule(project, session_root, [{"source": ".env", "destination": "env/local.env"}]))
        assert (session_root / "env" / "local.env").read_text() == "TOKEN=abc"

    def test_optional_missing_source_skipped(self, project: Path, session_root: Path):
        rule = _rule(
            project,
            session_root,
            [{"source": "nope.txt", "required": False}, {"source": ".env"}],
        )
        _apply(rule)
        assert not (session_root / "nope.txt").exists()
        assert (session_root / ".env").exists()

    def test_source_removed_after_validation_fails(self, project: Path, session_root: Path):
        rule = _rule(project, session_root, [{"source": ".env"}])
        _ = rule.validate()
        (project / ".env").unlink()
        with pytest.raises(ApplicationError, match="Required source file does not exist"):
            _ = rule.apply()
        assert rule.state == RuleState.FAILED

    def test_existing_destination_backed_up_and_restored(self, project: Path, session_root: Path):
        _ = (session_root / ".env").write_text("OLD=1")
        rule = _rule(project, session_root, [{"source": ".env"}])
        _apply(rule)
        assert (session_root / ".env").read_text() == "TOKEN=abc"
        _ = rule.rollback()
        assert (session_root / ".env").read_text() == "OLD=1"
        assert sorted(p.name for p in session_root.iterdir()) == [".env"]

    def test_encrypted_copy(self, project: Path, session_root: Path, monkeypatch):
        key = os.urandom(32)
        monkeypatch.setenv("SXN_ENCRYPTION_KEY", base64.b64encode(key).decode())
        rule = _rule(project, session_root, [{"source": ".env", "encrypt": True}])
        _apply(rule)
        data = (session_root / ".env").read_bytes()
        assert data != b"TOKEN=abc"
        copier = SecureFileCopier(session_root, encryption_key=key)
        assert copier.decrypt_bytes(data) == b"TOKEN=abc"
        assert rule.changes[-1].metadata["encrypted"] is True
        assert rule.encryption_key_b64 == base64.b64encode(key).decode()


class TestRollback:
    def test_rollback_removes_copies_and_created_dirs(self, project: Path, session_root: Path):
        rule = _rule(
            project,
            session_root,
            [{"source": "config/master.key"}, {"source": ".env", "strategy": "symlink"}],
        )
        _apply(rule)
        _ = rule.rollback()
        assert list(session_root.iterdir()) == []
        assert rule.state == RuleState.ROLLED_BACK
        assert (project / ".env").exists()
