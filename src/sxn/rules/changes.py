"""Change log entries recorded by rules, and how each one is undone."""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any

from sxn.rules.errors import RollbackError
from sxn.rules.models import ChangeType


def _freeze(metadata: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(metadata or {}))


@dataclass(frozen=True)
class Change:
    """One externally visible mutation made by a rule."""

    type: ChangeType | str
    target: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "target", str(self.target))
        object.__setattr__(self, "metadata", _freeze(self.metadata))
        try:
            object.__setattr__(self, "type", ChangeType(self.type))
        except ValueError:
            # Kept as a plain string; undo() reports it.
            pass

    def undo(self) -> None:
        """Reverse this change on disk. Raises RollbackError if it cannot."""
        path = Path(self.target)
        try:
            match self.type:
                case ChangeType.FILE_CREATED:
                    if path.is_file() or path.is_symlink():
                        path.unlink()
                case ChangeType.DIRECTORY_CREATED:
                    # Only remove if nothing else was put inside it
                    if path.is_dir() and not path.is_symlink() and not any(path.iterdir()):
                        path.rmdir()
                case ChangeType.FILE_MODIFIED:
                    backup = self.metadata.get("backup_path")
                    if not backup or not os.path.lexists(backup):
                        raise RollbackError(f"Backup missing for modified file: {self.target}")
                    if path.is_symlink() or path.is_file():
                        path.unlink()
                    _ = shutil.move(str(backup), str(path))
                case ChangeType.SYMLINK_CREATED:
                    if path.is_symlink():
                        path.unlink()
                case ChangeType.COMMAND_EXECUTED:
                    pass
                case _:
                    raise RollbackError(f"Unknown change type for rollback: {self.type}")
        except OSError as e:
            raise RollbackError(f"Failed to roll back {self.type} for {self.target}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "target": self.target,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }
