"""Root-confined path validation."""

from __future__ import annotations

import re
from pathlib import Path

from sxn.security.errors import PathValidationError

_REPEATED_SLASH = re.compile(r"//+")


class SecurePathValidator:
    """Resolve user-supplied paths and refuse anything that escapes ``root``.

    Relative paths are taken relative to the root. Symlinks are followed, so a
    link inside the root that points outside of it is rejected as well.
    """

    def __init__(self, root: str | Path) -> None:
        if not str(root).strip():
            raise ValueError("Root cannot be empty")
        try:
            self.root = Path(root).expanduser().resolve(strict=True)
        except FileNotFoundError:
            raise PathValidationError(f"Root does not exist: {root}")

    def validate_path(self, path: str | Path, *, allow_creation: bool = False) -> Path:
        """Return the resolved absolute path, or raise PathValidationError."""
        raw = str(path)
        if not raw:
            raise ValueError("Path cannot be empty")
        self._check_components(raw)

        candidate = Path(raw)
        if not candidate.is_absolute():
            candidate = self.root / candidate

        if not candidate.exists() and not candidate.is_symlink() and not allow_creation:
            raise PathValidationError(f"Path does not exist: {raw}")

        # Non-strict resolve follows every symlink in the existing prefix.
        resolved = candidate.resolve()
        self._check_within(resolved, raw)
        return resolved

    def validate_file_operation(
        self,
        source: str | Path,
        destination: str | Path,
        *,
        allow_creation: bool = True,
    ) -> tuple[Path, Path]:
        src = self.validate_path(source)
        dest = self.validate_path(destination, allow_creation=allow_creation)
        if src.is_dir():
            raise PathValidationError(f"Source cannot be a directory: {source}")
        return src, dest

    def within_boundaries(self, path: str | Path) -> bool:
        if not str(path):
            return False
        try:
            _ = self.validate_path(path, allow_creation=True)
        except PathValidationError:
            return False
        return True

    def _check_components(self, raw: str) -> None:
        if "\x00" in raw:
            raise PathValidationError(f"Path contains null bytes: {raw!r}")
        if ".." in Path(raw).parts or "..\\" in raw:
            raise PathValidationError(f"Path contains directory traversal sequences: {raw}")
        if _REPEATED_SLASH.search(raw):
            raise PathValidationError(f"Path contains dangerous pattern: {raw}")

    def _check_within(self, resolved: Path, raw: str) -> None:
        if resolved != self.root and not resolved.is_relative_to(self.root):
            raise PathValidationError(f"Path is outside boundaries of {self.root}: {raw}")
