"""setup_commands rule: run whitelisted install/bootstrap commands in the session."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from sxn.rules.base import BaseRule
from sxn.rules.errors import ApplicationError, ValidationError
from sxn.rules.models import ChangeType
from sxn.security.command_executor import CommandResult, SecureCommandExecutor
from sxn.security.errors import SecurityError

DEFAULT_TIMEOUT = 60
MAX_TIMEOUT = 1800

CONDITION_TYPES = (
    "always",
    "file_exists",
    "file_missing",
    "directory_exists",
    "directory_missing",
    "command_available",
    "env_var_set",
)


class SetupCommandsRule(BaseRule):
    kind = "setup_commands"
    description = "Run setup commands in the session"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._executor = SecureCommandExecutor(self.session_root, logger=self._logger)
        self.executed: list[tuple[str, CommandResult]] = []

    def _validate_rule_specific(self) -> None:
        if "commands" not in self.config:
            raise ValidationError("SetupCommandsRule requires 'commands' configuration")
        commands = self.config["commands"]
        if not isinstance(commands, tuple):
            raise ValidationError("SetupCommandsRule 'commands' must be an array")
        if not commands:
            raise ValidationError("SetupCommandsRule 'commands' cannot be empty")
        for index, entry in enumerate(commands):
            self._validate_entry(entry, index)
        if not isinstance(self.config.get("continue_on_failure", False), bool):
            raise ValidationError("continue_on_failure must be true or false")

    def _validate_entry(self, entry: Any, index: int) -> None:
        if not isinstance(entry, Mapping):
            raise ValidationError(f"Command config {index} must be a mapping")
        if "command" not in entry:
            raise ValidationError(f"Command config {index} must have a 'command' field")
        command = entry["command"]
        if (
            not isinstance(command, tuple)
            or not command
            or not all(isinstance(arg, str) for arg in command)
        ):
            raise ValidationError(f"Command config {index} 'command' must be a non-empty array")
        if not self._executor.command_allowed(command):
            raise ValidationError(f"Command config {index}: command not whitelisted: {command[0]}")

        if "timeout" in entry:
            timeout = entry["timeout"]
            if (
                isinstance(timeout, bool)
                or not isinstance(timeout, int)
                or not 0 < timeout <= MAX_TIMEOUT
            ):
                raise ValidationError(
                    f"Command config {index}: timeout must be positive integer <= {MAX_TIMEOUT}"
                )
        if "env" in entry:
            env = entry["env"]
            if not isinstance(env, Mapping):
                raise ValidationError(f"Command config {index}: env must be a mapping")
            if not all(isinstance(k, str) and isinstance(v, str) for k, v in env.items()):
                raise ValidationError(
                    f"Command config {index}: env keys and values must be strings"
                )
        if "condition" in entry and not _valid_condition(entry["condition"]):
            raise ValidationError(
                f"Command config {index}: invalid condition format: {entry['condition']}"
            )
        if "working_directory" in entry:
            working_dir = entry["working_directory"]
            if not isinstance(working_dir, str):
                raise ValidationError(f"Command config {index}: working_directory must be a string")
            if not self._inside_session(working_dir):
                raise ValidationError(
                    f"Command config {index}: working_directory must be within session path"
                )

    def _apply(self) -> None:
        tolerate = self.config.get("continue_on_failure", False)
        for index, entry in enumerate(self.config["commands"]):
            self._run(entry, index, tolerate)
        self._log(logging.INFO, f"executed {len(self.executed)} commands")

    def _run(self, entry: Mapping[str, Any], index: int, tolerate: bool) -> None:
        command = list(entry["command"])
        description = entry.get("description") or " ".join(command)
        tolerate = tolerate or not entry.get("required", True)

        if not self._should_run(entry.get("condition")):
            self._log(logging.INFO, f"skipping command due to condition: {description}")
            return

        self._log(logging.INFO, f"executing command {index}: {description}")
        work_dir = self._working_directory(entry)
        env = dict(entry.get("env", {}))
        try:
            result = self._executor.execute(
                command,
                env=env,
                timeout=entry.get("timeout", DEFAULT_TIMEOUT),
                chdir=work_dir,
            )
        except SecurityError as e:
            message = f"Failed to execute command: {description} - {e}"
            if not tolerate:
                raise ApplicationError(message) from e
            self._log(logging.WARNING, message)
            return

        self.executed.append((description, result))
        _ = self.track_change(
            ChangeType.COMMAND_EXECUTED,
            " ".join(command),
            {
                "working_directory": str(work_dir),
                "env": env,
                "exit_status": result.exit_status,
                "duration": result.duration,
            },
        )
        if result.failure:
            message = f"Command failed: {description} (exit status: {result.exit_status})"
            if result.stderr:
                message += f"\nSTDERR: {result.stderr.strip()}"
            if not tolerate:
                raise ApplicationError(message)
            self._log(logging.WARNING, message)

    def _working_directory(self, entry: Mapping[str, Any]) -> Path:
        if "working_directory" in entry:
            return (self.session_root / entry["working_directory"]).resolve()
        return self.session_root

    def _inside_session(self, relative: str) -> bool:
        return (self.session_root / relative).resolve().is_relative_to(self.session_root)

    def _should_run(self, condition: str | None) -> bool:
        if condition is None or condition == "always":
            return True
        kind, _, arg = condition.partition(":")
        match kind:
            case "file_exists":
                return (self.session_root / arg).exists()
            case "file_missing":
                return not (self.session_root / arg).exists()
            case "directory_exists":
                return (self.session_root / arg).is_dir()
            case "directory_missing":
                return not (self.session_root / arg).is_dir()
            case "command_available":
                return self._executor.command_allowed([arg])
            case "env_var_set":
                return bool(os.environ.get(arg))
        return True


def _valid_condition(condition: Any) -> bool:
    if condition is None or condition == "always":
        return True
    if not isinstance(condition, str) or ":" not in condition:
        return False
    return condition.split(":", 1)[0] in CONDITION_TYPES
