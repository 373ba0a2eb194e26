"""Exceptions raised by the security layer."""

from __future__ import annotations


class SecurityError(Exception):
    """Base class for refused or failed security-checked operations."""


class PathValidationError(SecurityError):
    """A path escapes its root or contains a dangerous pattern."""


class CommandExecutionError(SecurityError):
    """A command was refused, timed out, or could not be started."""
