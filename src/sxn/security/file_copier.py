"""Atomic, permission-aware file copies with optional AES-256-GCM encryption."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import re
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sxn.security.errors import SecurityError
from sxn.security.path_validator import SecurePathValidator

SENSITIVE_FILE_PATTERNS = (
    re.compile(r"master\.key$"),
    re.compile(r"credentials.*\.key$"),
    re.compile(r"\.env$"),
    re.compile(r"\.env\."),
    re.compile(r"secrets\.ya?ml$"),
    re.compile(r"\.pem$"),
    re.compile(r"\.p12$"),
    re.compile(r"\.jks$"),
    re.compile(r"\.npmrc$"),
    re.compile(r"auth_token", re.IGNORECASE),
    re.compile(r"api_key", re.IGNORECASE),
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
)

SENSITIVE_PERMISSIONS = 0o600
CONFIG_PERMISSIONS = 0o644
EXECUTABLE_PERMISSIONS = 0o755

MAX_FILE_SIZE = 100 * 1024 * 1024
NONCE_SIZE = 12
ENCRYPTION_KEY_ENV = "SXN_ENCRYPTION_KEY"


def sensitive_file(path: str | Path) -> bool:
    text = str(path)
    return any(p.search(text) for p in SENSITIVE_FILE_PATTERNS)


@dataclass
class CopyResult:
    source_path: str
    destination_path: str
    operation: str
    encrypted: bool = False
    checksum: str | None = None
    duration: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class SecureFileCopier:
    """Copy files into ``root``, optionally reading sources from ``source_root``.

    Destinations are validated against ``root``; sources against ``source_root``
    (defaults to ``root``).
    """

    def __init__(
        self,
        root: str | Path,
        *,
        source_root: str | Path | None = None,
        encryption_key: bytes | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._dest_validator = SecurePathValidator(root)
        self._source_validator = (
            SecurePathValidator(source_root) if source_root is not None else self._dest_validator
        )
        self.root = self._dest_validator.root
        self._logger = logger or logging.getLogger(__name__)
        self._key = encryption_key if encryption_key is not None else _key_from_env()
        if self._key is not None and len(self._key) != 32:
            raise SecurityError("Encryption key must be 32 bytes for AES-256-GCM")

    @property
    def encryption_key_b64(self) -> str | None:
        return base64.b64encode(self._key).decode() if self._key else None

    def copy_file(
        self,
        source: str | Path,
        destination: str | Path,
        *,
        permissions: int | None = None,
        encrypt: bool = False,
        preserve_permissions: bool = False,
        create_directories: bool = True,
    ) -> CopyResult:
        start = time.monotonic()
        src = self._source_validator.validate_path(source)
        if src.is_dir():
            raise SecurityError(f"Source cannot be a directory: {source}")
        dest = self._dest_validator.validate_path(destination, allow_creation=True)
        self._check_operation(src, dest)

        mode = self._target_permissions(src, permissions, preserve_permissions)
        if create_directories:
            dest.parent.mkdir(parents=True, exist_ok=True, mode=0o755)

        data = src.read_bytes()
        if encrypt:
            data = self.encrypt_bytes(data)
        self._write_atomic(dest, data, mode)

        result = CopyResult(
            source_path=str(src),
            destination_path=str(dest),
            operation="copy",
            encrypted=encrypt,
            checksum=_checksum(dest),
            duration=time.monotonic() - start,
        )
        self._audit("FILE_COPY", result.to_dict())
        return result

    def encrypt_bytes(self, data: bytes) -> bytes:
        if self._key is None:
            self._key = AESGCM.generate_key(bit_length=256)
        nonce = os.urandom(NONCE_SIZE)
        return nonce + AESGCM(self._key).encrypt(nonce, data, None)

    def decrypt_bytes(self, data: bytes) -> bytes:
        if self._key is None:
            raise SecurityError("No encryption key available for decryption")
        if len(data) <= NONCE_SIZE:
            raise SecurityError("Invalid encrypted content format")
        try:
            return AESGCM(self._key).decrypt(data[:NONCE_SIZE], data[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise SecurityError("Decryption failed: authentication tag mismatch") from e

    def sensitive_file(self, path: str | Path) -> bool:
        return sensitive_file(path)

    def secure_permissions(self, path: str | Path) -> bool:
        """True if ``path`` is not group/world accessible (sensitive) or world writable."""
        if not self._dest_validator.within_boundaries(path):
            return False
        resolved = self._dest_validator.validate_path(path, allow_creation=True)
        if not resolved.exists():
            return False
        mode = resolved.stat().st_mode & 0o777
        if sensitive_file(path):
            return mode & 0o077 == 0
        return mode & 0o002 == 0

    def _check_operation(self, src: Path, dest: Path) -> None:
        if not os.access(src, os.R_OK):
            raise SecurityError(f"Source file is not readable: {src}")
        size = src.stat().st_size
        if size > MAX_FILE_SIZE:
            raise SecurityError(f"File too large for secure copying: {size} bytes")
        if sensitive_file(src) and src.stat().st_mode & 0o004:
            self._logger.warning("Copying world-readable sensitive file: %s", src)
        if dest.exists() and dest.stat().st_uid != os.getuid():
            raise SecurityError(f"Cannot overwrite file owned by different user: {dest}")

    def _target_permissions(self, src: Path, explicit: int | None, preserve: bool) -> int:
        if explicit is not None:
            return explicit
        if preserve:
            return src.stat().st_mode & 0o777
        if sensitive_file(src):
            return SENSITIVE_PERMISSIONS
        if os.access(src, os.X_OK):
            return EXECUTABLE_PERMISSIONS
        return CONFIG_PERMISSIONS

    def _write_atomic(self, dest: Path, data: bytes, mode: int) -> None:
        tmp = dest.with_name(f"{dest.name}.tmp")
        try:
            _ = tmp.write_bytes(data)
            tmp.chmod(mode)
            _ = tmp.replace(dest)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise SecurityError(f"File copy failed: {e}") from e

    def _audit(self, event: str, details: dict[str, object]) -> None:
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event": event,
            "pid": os.getpid(),
            "user": os.environ.get("USER", "unknown"),
            **details,
        }
        self._logger.info("SECURITY_AUDIT: %s", json.dumps(entry))


def _key_from_env() -> bytes | None:
    raw = os.environ.get(ENCRYPTION_KEY_ENV)
    if not raw:
        return None
    try:
        return base64.b64decode(raw, validate=True)
    except binascii.Error as e:
        raise SecurityError(f"{ENCRYPTION_KEY_ENV} is not valid base64") from e


def _checksum(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            digest.update(chunk)
    return digest.hexdigest()
