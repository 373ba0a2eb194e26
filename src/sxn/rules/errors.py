"""Exception taxonomy for the rules engine."""

from __future__ import annotations


class RulesError(Exception):
    """Base class for expected rule failures."""


class ValidationError(RulesError):
    """A rule or rule set failed validation before anything was applied."""


class ApplicationError(RulesError):
    """A rule failed while applying its changes."""


class RollbackError(RulesError):
    """Undoing a tracked change failed."""


class ResolverInvariantError(RuntimeError):
    """The dependency resolver made no progress on a graph that passed validation."""
