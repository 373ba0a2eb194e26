"""Security layer: path validation, whitelisted command execution, secure copies."""

from sxn.security.command_executor import CommandResult, SecureCommandExecutor
from sxn.security.errors import CommandExecutionError, PathValidationError, SecurityError
from sxn.security.file_copier import CopyResult, SecureFileCopier
from sxn.security.path_validator import SecurePathValidator

__all__ = [
    "CommandExecutionError",
    "CommandResult",
    "CopyResult",
    "PathValidationError",
    "SecureCommandExecutor",
    "SecureFileCopier",
    "SecurePathValidator",
    "SecurityError",
]
