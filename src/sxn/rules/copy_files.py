"""copy_files rule: bring secrets and local config from the project into the session."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from sxn.rules.base import BaseRule
from sxn.rules.errors import ApplicationError, ValidationError
from sxn.rules.models import ChangeType
from sxn.security.file_copier import SecureFileCopier
from sxn.security.path_validator import SecurePathValidator

VALID_STRATEGIES = ("copy", "symlink")


def parse_permissions(value: Any) -> int | None:
    """Accept ``"0600"``/``"600"`` strings or ints in 0..0o777."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and len(value) in (3, 4) and all(c in "01234567" for c in value):
        if len(value) == 4 and value[0] != "0":
            return None
        return int(value, 8)
    if isinstance(value, int) and 0 <= value <= 0o777:
        return value
    return None


class CopyFilesRule(BaseRule):
    kind = "copy_files"
    description = "Copy or symlink files from the project into the session"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._sources = SecurePathValidator(self.project_root)
        self._destinations = SecurePathValidator(self.session_root)
        self._copier = SecureFileCopier(
            self.session_root, source_root=self.project_root, logger=self._logger
        )

    def _validate_rule_specific(self) -> None:
        files = self.config.get("files")
        if "files" not in self.config:
            raise ValidationError("CopyFilesRule requires 'files' configuration")
        if not isinstance(files, tuple):
            raise ValidationError("CopyFilesRule 'files' must be an array")
        if not files:
            raise ValidationError("CopyFilesRule 'files' cannot be empty")
        for index, entry in enumerate(files):
            self._validate_entry(entry, index)

    def _validate_entry(self, entry: Any, index: int) -> None:
        if not isinstance(entry, Mapping):
            raise ValidationError(f"File config {index} must be a mapping")
        source = entry.get("source")
        if not isinstance(source, str) or not source:
            raise ValidationError(f"File config {index} must have a 'source' string")
        strategy = entry.get("strategy", "copy")
        if strategy not in VALID_STRATEGIES:
            raise ValidationError(
                f"Invalid strategy '{strategy}' for file config {index}. "
                f"Valid strategies: {', '.join(VALID_STRATEGIES)}"
            )
        if "permissions" in entry and parse_permissions(entry["permissions"]) is None:
            raise ValidationError(
                f"File config {index} has invalid permissions '{entry['permissions']}'"
            )
        destination = entry.get("destination", source)
        if not isinstance(destination, str) or not destination:
            raise ValidationError(f"File config {index} has an invalid 'destination'")
        if not self._destinations.within_boundaries(destination):
            raise ValidationError(f"File config {index}: destination escapes the session")
        if entry.get("required", True) and not (self.project_root / source).exists():
            raise ValidationError(f"Required source file does not exist: {source}")
        if strategy == "symlink" and entry.get("encrypt"):
            self._log(
                logging.WARNING,
                f"file config {index}: encryption is not supported with symlink strategy",
            )

    def _apply(self) -> None:
        copied = 0
        for entry in self.config["files"]:
            if self._apply_entry(entry):
                copied += 1
        self._log(logging.INFO, f"copied {copied} of {len(self.config['files'])} files")

    def _apply_entry(self, entry: Mapping[str, Any]) -> bool:
        source = entry["source"]
        destination = entry.get("destination", source)
        strategy = entry.get("strategy", "copy")

        if not (self.project_root / source).exists():
            if entry.get("required", True):
                raise ApplicationError(f"Required source file does not exist: {source}")
            self._log(logging.DEBUG, f"skipping optional missing file: {source}")
            return False

        source_path = self._sources.validate_path(source)
        dest_path = self._destinations.validate_path(destination, allow_creation=True)
        self._make_parents(dest_path)
        self._backup_existing(dest_path)

        if strategy == "symlink":
            dest_path.symlink_to(source_path)
            _ = self.track_change(
                ChangeType.SYMLINK_CREATED,
                dest_path,
                {"source": str(source_path), "strategy": "symlink"},
            )
            return True

        encrypt = bool(entry.get("encrypt", False))
        result = self._copier.copy_file(
            source,
            dest_path,
            permissions=parse_permissions(entry["permissions"]) if "permissions" in entry else None,
            encrypt=encrypt,
            create_directories=False,
        )
        _ = self.track_change(
            ChangeType.FILE_CREATED,
            dest_path,
            {
                "source": str(source_path),
                "strategy": "copy",
                "encrypted": result.encrypted,
                "checksum": result.checksum,
            },
        )
        return True

    @property
    def encryption_key_b64(self) -> str | None:
        return self._copier.encryption_key_b64
