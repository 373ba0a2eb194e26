"""Outcome of one apply_rules() call."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from sxn.rules.base import BaseRule
from sxn.rules.models import ErrorEntry, ExecutionReport

ENGINE = "engine"


@dataclass
class ExecutionResult:
    applied_rules: list[BaseRule] = field(default_factory=list)
    failed_rules: list[BaseRule] = field(default_factory=list)
    skipped: list[tuple[BaseRule, str]] = field(default_factory=list)
    errors: list[tuple[str, Exception]] = field(default_factory=list)
    total_duration: float = 0.0
    _started: float | None = field(default=None, repr=False)

    def start(self) -> None:
        self._started = time.monotonic()

    def finish(self) -> None:
        if self._started is None:
            return
        self.total_duration = time.monotonic() - self._started

    def add_applied(self, rule: BaseRule) -> None:
        self.applied_rules.append(rule)

    def add_failed(self, rule: BaseRule, error: Exception) -> None:
        self.failed_rules.append(rule)
        self.errors.append((rule.name, error))

    def add_skipped(self, rule: BaseRule, reason: str) -> None:
        self.skipped.append((rule, reason))

    def add_engine_error(self, error: Exception) -> None:
        self.errors.append((ENGINE, error))

    @property
    def skipped_rules(self) -> list[BaseRule]:
        return [rule for rule, _ in self.skipped]

    @property
    def success(self) -> bool:
        return not self.failed_rules and not self.errors

    @property
    def total_rules(self) -> int:
        return len(self.applied_rules) + len(self.failed_rules) + len(self.skipped)

    def to_report(self) -> ExecutionReport:
        return ExecutionReport(
            success=self.success,
            total_rules=self.total_rules,
            applied_rules=[r.name for r in self.applied_rules],
            failed_rules=[r.name for r in self.failed_rules],
            skipped_rules=[r.name for r in self.skipped_rules],
            total_duration=self.total_duration,
            errors=[ErrorEntry(rule=name, message=str(err)) for name, err in self.errors],
        )
