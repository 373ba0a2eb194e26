"""Pydantic models and enums for the rules engine."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RuleState(StrEnum):
    PENDING = "pending"
    VALIDATING = "validating"
    VALIDATED = "validated"
    APPLYING = "applying"
    APPLIED = "applied"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


class ChangeType(StrEnum):
    FILE_CREATED = "file_created"
    DIRECTORY_CREATED = "directory_created"
    FILE_MODIFIED = "file_modified"
    SYMLINK_CREATED = "symlink_created"
    COMMAND_EXECUTED = "command_executed"


class RuleSpec(BaseModel):
    """Declarative description of one named rule.

    ``kind`` is read from either ``kind`` or ``type`` in the input mapping.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    kind: str = Field(alias="type")
    config: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)


class ExecutionOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    parallel: bool = True
    max_parallelism: int = Field(default=4, ge=1)
    continue_on_failure: bool = False
    validate_only: bool = False


class ErrorEntry(BaseModel):
    rule: str
    message: str


class ExecutionReport(BaseModel):
    """JSON-friendly snapshot of an ExecutionResult."""

    success: bool
    total_rules: int
    applied_rules: list[str] = Field(default_factory=list)
    failed_rules: list[str] = Field(default_factory=list)
    skipped_rules: list[str] = Field(default_factory=list)
    total_duration: float = 0.0
    errors: list[ErrorEntry] = Field(default_factory=list)


def parse_rule_specs(raw: Mapping[str, Any]) -> dict[str, RuleSpec]:
    """Turn a ``{name: {type, config, dependencies}}`` mapping into RuleSpecs."""
    if not isinstance(raw, Mapping):
        raise TypeError(f"rule specs must be a mapping, got {type(raw).__name__}")
    specs: dict[str, RuleSpec] = {}
    for name, entry in raw.items():
        if isinstance(entry, RuleSpec):
            specs[name] = entry
            continue
        if not isinstance(entry, Mapping):
            raise TypeError(f"rule '{name}' must be a mapping, got {type(entry).__name__}")
        data = dict(entry)
        if "kind" in data and "type" not in data:
            data["type"] = data.pop("kind")
        data.setdefault("name", name)
        specs[name] = RuleSpec.model_validate(data)
    return specs
