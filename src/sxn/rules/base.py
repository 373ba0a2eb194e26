"""Rule contract: lifecycle state machine, change tracking, and rollback.

Subclasses implement ``_validate_rule_specific`` and ``_apply``. Everything a
rule does to the outside world must be recorded with ``track_change`` so that
``rollback`` can undo it in reverse order.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Collection, Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, ClassVar

from sxn.rules.changes import Change
from sxn.rules.errors import ApplicationError, RollbackError, ValidationError
from sxn.rules.models import ChangeType, RuleState

# States in which rollback() has nothing to undo.
_NOTHING_APPLIED = frozenset(
    {
        RuleState.PENDING,
        RuleState.VALIDATING,
        RuleState.VALIDATED,
        RuleState.FAILED,
        RuleState.ROLLED_BACK,
    }
)


def freeze_config(value: Any) -> Any:
    """Recursively convert mappings to read-only proxies and lists to tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze_config(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_config(v) for v in value)
    return value


def thaw_config(value: Any) -> Any:
    """Inverse of freeze_config, for serialization."""
    if isinstance(value, Mapping):
        return {k: thaw_config(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw_config(v) for v in value]
    return value


def require_writable_dir(path: str | Path, label: str) -> Path:
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        raise ValueError(f"{label} does not exist: {path}")
    if not resolved.is_dir():
        raise ValueError(f"{label} is not a directory: {path}")
    if not os.access(resolved, os.W_OK):
        raise ValueError(f"{label} is not writable: {path}")
    return resolved


class BaseRule:
    """A named, dependency-aware unit of provisioning work."""

    kind: ClassVar[str] = "base"
    description: ClassVar[str] = ""

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None,
        project_root: str | Path,
        session_root: str | Path,
        *,
        dependencies: Iterable[str] = (),
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self.project_root = require_writable_dir(project_root, "Project root")
        self.session_root = require_writable_dir(session_root, "Session root")
        self.config = freeze_config(config if config is not None else {})
        self.dependencies: tuple[str, ...] = tuple(dependencies)
        self.state = RuleState.PENDING
        self.changes: list[Change] = []
        self.errors: list[Exception] = []
        self.started_at: datetime | None = None
        self.duration: float = 0.0
        self._logger = logger or logging.getLogger(__name__)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} state={self.state}>"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """Check configuration. Idempotent once validated."""
        if self.state == RuleState.VALIDATED:
            return True
        self._change_state(RuleState.VALIDATING)
        try:
            if not isinstance(self.config, Mapping):
                raise ValidationError("Rule config must be a mapping")
            for dep in self.dependencies:
                if not isinstance(dep, str) or not dep.strip():
                    raise ValidationError(f"Invalid dependency name: {dep!r}")
            self._validate_rule_specific()
        except Exception as e:
            err = e if isinstance(e, ValidationError) else ValidationError(str(e))
            self.errors.append(err)
            self._change_state(RuleState.FAILED)
            if err is e:
                raise
            raise err from e
        self._change_state(RuleState.VALIDATED)
        return True

    def apply(self) -> bool:
        """Apply the rule, recording every change. Requires a validated rule."""
        if self.state != RuleState.VALIDATED:
            raise ApplicationError(
                f"Rule '{self.name}' cannot be applied from state '{self.state}'"
            )
        self._change_state(RuleState.APPLYING)
        self.started_at = datetime.now(UTC)
        start = time.monotonic()
        try:
            self._apply()
        except Exception as e:
            self.duration = time.monotonic() - start
            self.errors.append(e)
            self._log(logging.ERROR, f"apply failed: {e}")
            self._discard_partial_changes()
            self._change_state(RuleState.FAILED)
            raise ApplicationError(f"Rule '{self.name}' failed to apply: {e}") from e
        self.duration = time.monotonic() - start
        self._change_state(RuleState.APPLIED)
        return True

    def rollback(self) -> bool:
        """Undo tracked changes in reverse order. No-op when nothing is applied."""
        if self.state in _NOTHING_APPLIED:
            return True
        self._change_state(RuleState.ROLLING_BACK)
        try:
            for change in reversed(self.changes):
                change.undo()
        except Exception as e:
            self.errors.append(e)
            self._change_state(RuleState.FAILED)
            self._log(logging.ERROR, f"rollback failed: {e}")
            if isinstance(e, RollbackError):
                raise
            raise RollbackError(f"Rule '{self.name}' failed to roll back: {e}") from e
        self.changes.clear()
        self._change_state(RuleState.ROLLED_BACK)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def can_execute(self, completed: Collection[str]) -> bool:
        return all(dep in completed for dep in self.dependencies)

    @property
    def rollbackable(self) -> bool:
        return self.state == RuleState.APPLIED and bool(self.changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "state": str(self.state),
            "config": thaw_config(self.config),
            "dependencies": list(self.dependencies),
            "changes": [c.to_dict() for c in self.changes],
            "errors": [str(e) for e in self.errors],
            "duration": self.duration,
            "applied_at": self.started_at.isoformat() if self.started_at else None,
        }

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _validate_rule_specific(self) -> None:
        """Raise ValidationError if the kind-specific config is malformed."""

    def _apply(self) -> None:
        raise NotImplementedError(f"{type(self).__name__} must implement _apply()")

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def track_change(
        self,
        change_type: ChangeType | str,
        target: str | Path,
        metadata: Mapping[str, Any] | None = None,
    ) -> Change:
        change = Change(type=change_type, target=str(target), metadata=metadata or {})
        self.changes.append(change)
        self._log(logging.DEBUG, f"tracked {change.type}: {change.target}")
        return change

    def _make_parents(self, path: Path) -> None:
        """Create missing parent directories of path, tracking each one top-down."""
        missing: list[Path] = []
        parent = path.parent
        while not parent.exists():
            missing.append(parent)
            parent = parent.parent
        for directory in reversed(missing):
            directory.mkdir()
            _ = self.track_change(ChangeType.DIRECTORY_CREATED, directory)

    def _backup_existing(self, path: Path) -> None:
        """Move an existing destination aside and track it as modified."""
        if not (path.exists() or path.is_symlink()):
            return
        if path.is_dir() and not path.is_symlink():
            raise ApplicationError(f"Destination is a directory: {path}")
        backup = path.with_name(f"{path.name}.sxn-backup-{time.time_ns()}")
        path.rename(backup)
        _ = self.track_change(
            ChangeType.FILE_MODIFIED, path, {"backup_path": str(backup)}
        )

    def _discard_partial_changes(self) -> None:
        """Best-effort undo of whatever a failed apply() managed to do."""
        for change in reversed(self.changes):
            try:
                change.undo()
            except RollbackError as e:
                self.errors.append(e)
                self._log(logging.WARNING, f"could not undo partial change: {e}")
        self.changes.clear()

    def _change_state(self, new_state: RuleState) -> None:
        old = self.state
        self.state = new_state
        self._log(logging.DEBUG, f"state {old} -> {new_state}")

    def _log(self, level: int, message: str) -> None:
        self._logger.log(level, "[Rule:%s] %s", self.name, message)
