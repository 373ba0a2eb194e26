"""Whitelisted command execution without a shell.

All commands run as argv lists against a scrubbed environment. Each execution
is written to the audit log with the executable name only, never its
arguments, since those may carry credentials.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

from sxn.security.errors import CommandExecutionError, PathValidationError
from sxn.security.path_validator import SecurePathValidator

# Looked up on PATH when the executor is created.
SYSTEM_COMMANDS = (
    "bundle",
    "gem",
    "ruby",
    "rails",
    "npm",
    "npx",
    "yarn",
    "pnpm",
    "node",
    "python",
    "python3",
    "pip",
    "pip3",
    "pipenv",
    "poetry",
    "uv",
    "cargo",
    "go",
    "git",
    "psql",
    "mysql",
    "sqlite3",
    "make",
    "curl",
    "wget",
)

# Resolved relative to the executor root.
PROJECT_EXECUTABLES = (
    "bin/rails",
    "bin/setup",
    "bin/dev",
    "bin/test",
    "./bin/rails",
    "./bin/setup",
    "./bin/dev",
    "./bin/test",
)

SAFE_ENV_VARS = (
    "PATH",
    "HOME",
    "USER",
    "LANG",
    "LC_ALL",
    "TZ",
    "TMPDIR",
    "RAILS_ENV",
    "NODE_ENV",
    "BUNDLE_GEMFILE",
    "GEM_HOME",
    "GEM_PATH",
    "RBENV_VERSION",
    "NVM_DIR",
    "NVM_BIN",
    "VIRTUAL_ENV",
    "SSL_CERT_FILE",
    "SSL_CERT_DIR",
)

MAX_TIMEOUT = 1800

_ENV_NAME = re.compile(r"^[A-Z_][A-Z0-9_]*$")


@dataclass
class CommandResult:
    exit_status: int
    stdout: str
    stderr: str
    command: list[str]
    duration: float

    @property
    def success(self) -> bool:
        return self.exit_status == 0

    @property
    def failure(self) -> bool:
        return not self.success

    def to_dict(self) -> dict[str, object]:
        return {**asdict(self), "success": self.success}


class SecureCommandExecutor:
    def __init__(self, root: str | Path, *, logger: logging.Logger | None = None) -> None:
        self._validator = SecurePathValidator(root)
        self.root = self._validator.root
        self._logger = logger or logging.getLogger(__name__)
        self._whitelist = self._build_whitelist()

    def allowed_commands(self) -> list[str]:
        return sorted(self._whitelist)

    def command_allowed(self, command: Sequence[str]) -> bool:
        if isinstance(command, str) or not command:
            return False
        return command[0] in self._whitelist

    def execute(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        timeout: float = 30,
        chdir: str | Path | None = None,
    ) -> CommandResult:
        if isinstance(command, str):
            raise ValueError("Command must be a list of arguments, not a string")
        if not command:
            raise ValueError("Command cannot be empty")
        if not 0 < timeout <= MAX_TIMEOUT:
            raise ValueError(f"Timeout must be between 0 and {MAX_TIMEOUT} seconds")

        argv = self._resolve(command)
        safe_env = self._build_env(env or {})
        work_dir = self._work_dir(chdir) if chdir else self.root

        self._audit("EXEC_START", argv, work_dir, {"env_keys": sorted(safe_env)})
        start = time.monotonic()
        try:
            proc = subprocess.run(
                argv,
                env=safe_env,
                cwd=work_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            self._audit("EXEC_ERROR", argv, work_dir, {"error": "timeout"})
            raise CommandExecutionError(f"Command timed out after {timeout} seconds")
        except OSError as e:
            self._audit("EXEC_ERROR", argv, work_dir, {"error": type(e).__name__})
            raise CommandExecutionError(f"Command execution failed: {e}") from e
        duration = time.monotonic() - start

        result = CommandResult(
            exit_status=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            command=argv,
            duration=duration,
        )
        self._audit(
            "EXEC_COMPLETE",
            argv,
            work_dir,
            {"exit_status": result.exit_status, "duration": duration, "success": result.success},
        )
        return result

    def _build_whitelist(self) -> dict[str, str]:
        whitelist: dict[str, str] = {}
        for name in SYSTEM_COMMANDS:
            found = shutil.which(name)
            if found:
                whitelist[name] = found
        for name in PROJECT_EXECUTABLES:
            path = self.root / name.removeprefix("./")
            if path.is_file() and os.access(path, os.X_OK):
                whitelist[name] = str(path)
        return whitelist

    def _resolve(self, command: Sequence[str]) -> list[str]:
        name = command[0]
        if name not in self._whitelist:
            raise CommandExecutionError(f"Command not whitelisted: {name}")
        return [self._whitelist[name], *command[1:]]

    def _build_env(self, user_env: Mapping[str, str]) -> dict[str, str]:
        safe_env = {k: os.environ[k] for k in SAFE_ENV_VARS if k in os.environ}
        for key, value in user_env.items():
            key_str, value_str = str(key), str(value)
            if not _ENV_NAME.match(key_str):
                raise CommandExecutionError(f"Invalid environment variable name: {key_str}")
            if "\x00" in value_str:
                raise CommandExecutionError(f"Environment variable contains null bytes: {key_str}")
            safe_env[key_str] = value_str
        return safe_env

    def _work_dir(self, chdir: str | Path) -> Path:
        try:
            path = self._validator.validate_path(chdir)
        except PathValidationError as e:
            raise CommandExecutionError(f"Invalid working directory: {e}") from e
        if not path.is_dir():
            raise CommandExecutionError(f"Working directory does not exist: {chdir}")
        return path

    def _audit(self, event: str, argv: list[str], chdir: Path, details: dict[str, object]) -> None:
        entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event": event,
            "command": Path(argv[0]).name,
            "chdir": str(chdir),
            "pid": os.getpid(),
            **details,
        }
        self._logger.info("SECURITY_AUDIT: %s", json.dumps(entry))
