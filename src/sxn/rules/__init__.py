"""Rules engine: declarative, dependency-ordered, transactional session provisioning."""

from sxn.rules.base import BaseRule
from sxn.rules.changes import Change
from sxn.rules.config import EngineConfig, load_engine_config, load_rule_specs
from sxn.rules.engine import RulesEngine
from sxn.rules.errors import (
    ApplicationError,
    ResolverInvariantError,
    RollbackError,
    RulesError,
    ValidationError,
)
from sxn.rules.graph import DependencyGraph
from sxn.rules.models import (
    ChangeType,
    ExecutionOptions,
    ExecutionReport,
    RuleSpec,
    RuleState,
    parse_rule_specs,
)
from sxn.rules.registry import RULE_KINDS
from sxn.rules.result import ExecutionResult
from sxn.rules.rollback import RollbackCoordinator

__all__ = [
    "RULE_KINDS",
    "ApplicationError",
    "BaseRule",
    "Change",
    "ChangeType",
    "DependencyGraph",
    "EngineConfig",
    "ExecutionOptions",
    "ExecutionReport",
    "ExecutionResult",
    "ResolverInvariantError",
    "RollbackCoordinator",
    "RollbackError",
    "RuleSpec",
    "RuleState",
    "RulesEngine",
    "RulesError",
    "ValidationError",
    "load_engine_config",
    "load_rule_specs",
    "parse_rule_specs",
]
