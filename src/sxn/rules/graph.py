"""Dependency graph over named rules: validation, cycle detection, phasing."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from pathlib import Path

from sxn.rules.base import BaseRule
from sxn.rules.errors import ResolverInvariantError, ValidationError
from sxn.rules.models import RuleSpec
from sxn.rules.registry import RULE_KINDS, RuleRegistry


def build_rules(
    specs: Mapping[str, RuleSpec],
    project_root: str | Path,
    session_root: str | Path,
    *,
    registry: RuleRegistry | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, BaseRule]:
    """Instantiate one rule per spec. Unknown kinds raise ValidationError."""
    kinds = registry if registry is not None else RULE_KINDS
    rules: dict[str, BaseRule] = {}
    for name, spec in specs.items():
        rule_cls = kinds.get(spec.kind)
        if rule_cls is None:
            raise ValidationError(
                f"Unknown rule kind '{spec.kind}' for rule '{name}'. "
                f"Available: {', '.join(sorted(kinds))}"
            )
        rules[name] = rule_cls(
            name,
            spec.config,
            project_root,
            session_root,
            dependencies=spec.dependencies,
            logger=logger,
        )
    return rules


class DependencyGraph:
    """Rules keyed by name, in input order."""

    def __init__(self, rules: Mapping[str, BaseRule]) -> None:
        self.rules = dict(rules)

    def check_dependencies(self) -> None:
        for name, rule in self.rules.items():
            for dep in rule.dependencies:
                if dep not in self.rules:
                    raise ValidationError(f"Rule '{name}' depends on non-existent rule '{dep}'")

    def detect_cycles(self) -> None:
        """Depth-first search with an explicit stack; a back-edge is a cycle."""
        visited: set[str] = set()
        on_stack: set[str] = set()

        for root in self.rules:
            if root in visited:
                continue
            visited.add(root)
            on_stack.add(root)
            stack: list[tuple[str, Iterator[str]]] = [
                (root, iter(self.rules[root].dependencies))
            ]
            while stack:
                name, deps = stack[-1]
                dep = next(deps, None)
                if dep is None:
                    on_stack.discard(name)
                    _ = stack.pop()
                    continue
                if dep in on_stack:
                    raise ValidationError(f"Circular dependency detected involving rule '{dep}'")
                if dep not in visited:
                    visited.add(dep)
                    on_stack.add(dep)
                    stack.append((dep, iter(self.rules[dep].dependencies)))

    def validate(self) -> None:
        self.check_dependencies()
        self.detect_cycles()

    def resolve(self) -> list[list[BaseRule]]:
        """Group rules into phases; every rule's dependencies sit in earlier phases."""
        self.validate()
        placed: set[str] = set()
        remaining = list(self.rules.values())
        phases: list[list[BaseRule]] = []
        while remaining:
            phase = [rule for rule in remaining if rule.can_execute(placed)]
            if not phase:
                raise ResolverInvariantError(
                    "Dependency resolution made no progress; unplaced rules: "
                    + ", ".join(rule.name for rule in remaining)
                )
            phases.append(phase)
            placed.update(rule.name for rule in phase)
            remaining = [rule for rule in remaining if rule.name not in placed]
        return phases
