"""Tests for the BaseRule lifecycle state machine."""

from pathlib import Path

import pytest

from conftest import JournalRule
from sxn.rules.base import BaseRule, freeze_config, thaw_config
from sxn.rules.errors import ApplicationError, RollbackError, ValidationError
from sxn.rules.models import ChangeType, RuleState


class PartialRule(BaseRule):
    """Creates nested directories and a file, then fails."""

    kind = "partial"

    def _apply(self) -> None:
        target = self.session_root / "deep" / "er" / "file.txt"
        self._make_parents(target)
        _ = target.write_text("x")
        _ = self.track_change(ChangeType.FILE_CREATED, target)
        raise OSError("disk full")


class ReplacingRule(BaseRule):
    kind = "replacing"

    def _apply(self) -> None:
        target = self.session_root / "settings.json"
        self._backup_existing(target)
        _ = target.write_text("new")
        _ = self.track_change(ChangeType.FILE_CREATED, target)


def _rule(project_root: Path, session_root: Path, cls=JournalRule, **config) -> BaseRule:
    return cls("r", config, project_root, session_root)


class TestConstruction:
    def test_starts_pending(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root)
        assert rule.state == RuleState.PENDING
        assert rule.changes == []
        assert rule.dependencies == ()

    def test_config_is_frozen(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root, items=[{"a": 1}])
        with pytest.raises(TypeError):
            rule.config["items"] = []  # type: ignore[index]
        assert rule.config["items"][0]["a"] == 1

    def test_missing_root_rejected(self, project_root: Path, tmp_path: Path):
        with pytest.raises(ValueError, match="Session root does not exist"):
            _ = JournalRule("r", {}, project_root, tmp_path / "missing")

    def test_freeze_thaw_roundtrip(self):
        data = {"a": [1, {"b": [2]}], "c": "d"}
        assert thaw_config(freeze_config(data)) == data


class TestValidate:
    def test_validate_moves_to_validated(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root)
        assert rule.validate() is True
        assert rule.state == RuleState.VALIDATED

    def test_validate_is_idempotent(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root)
        _ = rule.validate()
        assert rule.validate() is True
        assert rule.state == RuleState.VALIDATED

    def test_invalid_config_fails(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root, invalid=True)
        with pytest.raises(ValidationError, match="configured to be invalid"):
            _ = rule.validate()
        assert rule.state == RuleState.FAILED
        assert len(rule.errors) == 1

    def test_blank_dependency_name_fails(self, project_root: Path, session_root: Path):
        rule = JournalRule("r", {}, project_root, session_root, dependencies=["  "])
        with pytest.raises(ValidationError, match="Invalid dependency name"):
            _ = rule.validate()


class TestApply:
    def test_apply_requires_validation(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root)
        with pytest.raises(ApplicationError, match="cannot be applied from state 'pending'"):
            _ = rule.apply()
        assert rule.state == RuleState.PENDING

    def test_apply_success(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root, create="out.txt")
        _ = rule.validate()
        assert rule.apply() is True
        assert rule.state == RuleState.APPLIED
        assert rule.started_at is not None
        assert [c.type for c in rule.changes] == [ChangeType.FILE_CREATED]
        assert rule.rollbackable

    def test_apply_twice_is_rejected(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root)
        _ = rule.validate()
        _ = rule.apply()
        with pytest.raises(ApplicationError):
            _ = rule.apply()

    def test_apply_failure_wraps_cause(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root, fail=True)
        _ = rule.validate()
        with pytest.raises(ApplicationError, match="Rule 'r' failed to apply") as exc_info:
            _ = rule.apply()
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert rule.state == RuleState.FAILED

    def test_apply_failure_discards_partial_changes(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root, cls=PartialRule)
        _ = rule.validate()
        with pytest.raises(ApplicationError, match="disk full"):
            _ = rule.apply()
        assert not (session_root / "deep").exists()
        assert rule.changes == []
        assert not rule.rollbackable


class TestRollback:
    def test_rollback_undoes_file_created(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root, create="out.txt")
        _ = rule.validate()
        _ = rule.apply()
        assert (session_root / "out.txt").exists()
        assert rule.rollback() is True
        assert not (session_root / "out.txt").exists()
        assert rule.state == RuleState.ROLLED_BACK
        assert rule.changes == []

    def test_rollback_twice_is_noop(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root, create="out.txt")
        _ = rule.validate()
        _ = rule.apply()
        assert rule.rollback() is True
        assert rule.rollback() is True
        assert rule.state == RuleState.ROLLED_BACK

    def test_rollback_before_apply_is_noop(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root)
        assert rule.rollback() is True
        assert rule.state == RuleState.PENDING

    def test_backup_restored_on_rollback(self, project_root: Path, session_root: Path):
        settings = session_root / "settings.json"
        _ = settings.write_text("old")
        rule = _rule(project_root, session_root, cls=ReplacingRule)
        _ = rule.validate()
        _ = rule.apply()
        assert settings.read_text() == "new"
        _ = rule.rollback()
        assert settings.read_text() == "old"
        assert [p.name for p in session_root.iterdir()] == ["settings.json"]

    def test_rollback_failure_marks_failed(self, project_root: Path, session_root: Path):
        rule = _rule(project_root, session_root)
        _ = rule.validate()
        _ = rule.apply()
        _ = rule.track_change(ChangeType.FILE_MODIFIED, session_root / "x")
        with pytest.raises(RollbackError, match="Backup missing"):
            _ = rule.rollback()
        assert rule.state == RuleState.FAILED


class TestQueries:
    def test_can_execute(self, project_root: Path, session_root: Path):
        rule = JournalRule("r", {}, project_root, session_root, dependencies=["a", "b"])
        assert not rule.can_execute({"a"})
        assert rule.can_execute({"a", "b", "c"})

    def test_to_dict(self, project_root: Path, session_root: Path):
        rule = JournalRule("r", {"k": [1]}, project_root, session_root, dependencies=["a"])
        data = rule.to_dict()
        assert data["name"] == "r"
        assert data["kind"] == "journal"
        assert data["state"] == "pending"
        assert data["config"] == {"k": [1]}
        assert data["dependencies"] == ["a"]
        assert data["applied_at"] is None
