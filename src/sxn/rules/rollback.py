"""Reverse-order unwinding of rules applied during a run."""

from __future__ import annotations

import logging

from sxn.rules.base import BaseRule
from sxn.rules.errors import RollbackError


class RollbackCoordinator:
    """Holds applied rules in completion order and rolls them back in reverse.

    ``record`` is not synchronized; callers serialize access.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._applied: list[BaseRule] = []

    @property
    def applied(self) -> list[BaseRule]:
        return list(self._applied)

    def record(self, rule: BaseRule) -> None:
        self._applied.append(rule)

    def rollback_rules(self) -> bool:
        if not self._applied:
            return True
        self._logger.info("Rolling back %d applied rules", len(self._applied))
        for rule in reversed(self._applied):
            if not rule.rollbackable:
                self._logger.debug("Rule '%s' has nothing to roll back", rule.name)
                continue
            try:
                _ = rule.rollback()
                self._logger.debug("Rolled back rule '%s'", rule.name)
            except RollbackError as e:
                self._logger.error("Failed to roll back rule '%s': %s", rule.name, e)
        self._applied.clear()
        return True
