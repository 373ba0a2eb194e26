"""Rules engine: validate, phase, apply (optionally in parallel), and roll back.

A run builds one rule per spec, drops rules that fail validation, resolves the
rest into dependency phases, and applies phase by phase. Rules inside a phase
run on a bounded thread pool. On the first apply failure no further rules are
started and the rules applied by that run are rolled back, unless the caller
asked to continue on failure. Rules from earlier successful runs stay in the
engine's list until an explicit ``rollback_rules``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any

from sxn.rules.base import BaseRule, require_writable_dir
from sxn.rules.errors import ApplicationError, ResolverInvariantError, ValidationError
from sxn.rules.graph import DependencyGraph, build_rules
from sxn.rules.models import ExecutionOptions, RuleSpec, RuleState, parse_rule_specs
from sxn.rules.registry import RULE_KINDS, RuleRegistry
from sxn.rules.result import ExecutionResult
from sxn.rules.rollback import RollbackCoordinator

ABORTED = "not started: run aborted after an earlier failure"


class _RunCollector:
    """The only state shared between phase workers; every mutation holds the lock."""

    def __init__(
        self,
        result: ExecutionResult,
        run_coordinator: RollbackCoordinator,
        lock: threading.Lock,
    ) -> None:
        self._result = result
        self._coordinator = run_coordinator
        self._lock = lock
        self._applied: set[str] = set()

    def applied(self, rule: BaseRule) -> None:
        with self._lock:
            self._result.add_applied(rule)
            self._coordinator.record(rule)
            self._applied.add(rule.name)

    def failed(self, rule: BaseRule, error: Exception) -> None:
        with self._lock:
            self._result.add_failed(rule, error)

    def skipped(self, rule: BaseRule, reason: str) -> None:
        with self._lock:
            self._result.add_skipped(rule, reason)

    def missing_dependencies(self, rule: BaseRule) -> list[str]:
        with self._lock:
            return [dep for dep in rule.dependencies if dep not in self._applied]


class RulesEngine:
    def __init__(
        self,
        project_root: str | Path,
        session_root: str | Path,
        *,
        logger: logging.Logger | None = None,
        registry: RuleRegistry | None = None,
    ) -> None:
        self.project_root = require_writable_dir(project_root, "Project root")
        self.session_root = require_writable_dir(session_root, "Session root")
        self._logger = logger or logging.getLogger(__name__)
        self._registry = registry if registry is not None else RULE_KINDS
        self._coordinator = RollbackCoordinator(self._logger)
        self._lock = threading.Lock()

    @property
    def applied_rules(self) -> list[BaseRule]:
        with self._lock:
            return self._coordinator.applied

    def available_rule_kinds(self) -> list[str]:
        return sorted(self._registry)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def apply_rules(
        self,
        rule_specs: Mapping[str, Any],
        options: ExecutionOptions | None = None,
        **overrides: Any,
    ) -> ExecutionResult:
        """Apply a rule set. Expected failures are reported in the result, not raised."""
        opts = options or ExecutionOptions()
        result = ExecutionResult()
        result.start()
        try:
            if overrides:
                opts = ExecutionOptions.model_validate({**opts.model_dump(), **overrides})
            graph = self._build_graph(rule_specs)
            graph.validate()
            self._validate_each(graph, result)
            if opts.validate_only:
                return result
            self._execute(graph.resolve(), opts, result)
        except ResolverInvariantError:
            raise
        except Exception as e:
            self._logger.error("Rules engine error: %s", e)
            result.add_engine_error(e)
        finally:
            result.finish()
        self._logger.info(
            "Rules run finished: %d applied, %d failed, %d skipped in %.2fs",
            len(result.applied_rules),
            len(result.failed_rules),
            len(result.skipped),
            result.total_duration,
        )
        return result

    def validate_rules_config(self, rule_specs: Mapping[str, Any]) -> list[BaseRule]:
        """Strict pre-flight: raise ValidationError on the first problem."""
        graph = self._build_graph(rule_specs)
        for name, rule in graph.rules.items():
            try:
                _ = rule.validate()
            except ValidationError as e:
                raise ValidationError(f"Rule '{name}' validation failed: {e}") from e
        graph.validate()
        return list(graph.rules.values())

    def rollback_rules(self) -> bool:
        with self._lock:
            return self._coordinator.rollback_rules()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_graph(self, rule_specs: Mapping[str, Any]) -> DependencyGraph:
        specs: dict[str, RuleSpec] = parse_rule_specs(rule_specs)
        rules = build_rules(
            specs,
            self.project_root,
            self.session_root,
            registry=self._registry,
            logger=self._logger,
        )
        return DependencyGraph(rules)

    def _validate_each(self, graph: DependencyGraph, result: ExecutionResult) -> None:
        for name, rule in graph.rules.items():
            try:
                _ = rule.validate()
            except ValidationError as e:
                self._logger.warning("Rule '%s' failed validation: %s", name, e)
                result.add_skipped(rule, f"validation failed: {e}")

    def _execute(
        self,
        phases: list[list[BaseRule]],
        opts: ExecutionOptions,
        result: ExecutionResult,
    ) -> None:
        # Rules applied by this run; a failure unwinds only these
        run_coordinator = RollbackCoordinator(self._logger)
        collector = _RunCollector(result, run_coordinator, self._lock)
        abort = threading.Event()

        for index, phase in enumerate(phases):
            runnable = [rule for rule in phase if rule.state == RuleState.VALIDATED]
            if not runnable:
                continue
            if abort.is_set():
                for rule in runnable:
                    collector.skipped(rule, ABORTED)
                continue
            self._logger.info(
                "Phase %d: %s", index, ", ".join(rule.name for rule in runnable)
            )
            if opts.parallel and len(runnable) > 1:
                workers = min(len(runnable), opts.max_parallelism)
                with ThreadPoolExecutor(max_workers=workers) as pool:
                    futures = [
                        pool.submit(self._run_rule, rule, collector, abort, opts)
                        for rule in runnable
                    ]
                    for future in as_completed(futures):
                        future.result()
            else:
                for rule in runnable:
                    self._run_rule(rule, collector, abort, opts)

        with self._lock:
            if abort.is_set():
                self._logger.warning("Rule failure: rolling back rules applied by this run")
                _ = run_coordinator.rollback_rules()
            else:
                for rule in run_coordinator.applied:
                    self._coordinator.record(rule)

    def _run_rule(
        self,
        rule: BaseRule,
        collector: _RunCollector,
        abort: threading.Event,
        opts: ExecutionOptions,
    ) -> None:
        if abort.is_set():
            collector.skipped(rule, ABORTED)
            return
        missing = collector.missing_dependencies(rule)
        if missing:
            self._logger.warning(
                "Skipping rule '%s': dependency not applied: %s", rule.name, ", ".join(missing)
            )
            collector.skipped(rule, f"dependency not applied: {', '.join(missing)}")
            return
        try:
            _ = rule.apply()
        except ApplicationError as e:
            collector.failed(rule, e)
            if not opts.continue_on_failure:
                abort.set()
            return
        self._logger.info("Applied rule '%s' in %.2fs", rule.name, rule.duration)
        collector.applied(rule)
