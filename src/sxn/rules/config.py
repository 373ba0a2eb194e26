"""EngineConfig dataclass and loaders for the rules sections of .sxn.json."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sxn.rules.models import ExecutionOptions

CONFIG_FILENAME = ".sxn.json"


@dataclass
class EngineConfig:
    parallel: bool = True
    max_parallelism: int = 4
    continue_on_failure: bool = False

    def to_options(self, *, validate_only: bool = False) -> ExecutionOptions:
        return ExecutionOptions(
            parallel=self.parallel,
            max_parallelism=self.max_parallelism,
            continue_on_failure=self.continue_on_failure,
            validate_only=validate_only,
        )


def _truthy(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load the rules_engine section of .sxn.json, then apply env overrides."""
    config = EngineConfig()
    if path and path.exists():
        try:
            text = path.read_text()
            if text.strip():
                data = json.loads(text)
                section = data.get("rules_engine", {}) if isinstance(data, dict) else {}
                if isinstance(section, dict):
                    _apply(config, section)
        except (json.JSONDecodeError, OSError):
            pass
    if env_val := os.environ.get("SXN_PARALLEL"):
        config.parallel = _truthy(env_val)
    if env_val := os.environ.get("SXN_MAX_PARALLELISM"):
        try:
            config.max_parallelism = max(1, int(env_val))
        except ValueError:
            pass
    if env_val := os.environ.get("SXN_CONTINUE_ON_FAILURE"):
        config.continue_on_failure = _truthy(env_val)
    return config


def _apply(cfg: EngineConfig, data: dict[str, object]) -> None:
    if "parallel" in data and isinstance(data["parallel"], bool):
        cfg.parallel = data["parallel"]
    max_par = data.get("max_parallelism")
    if isinstance(max_par, int) and not isinstance(max_par, bool) and max_par >= 1:
        cfg.max_parallelism = max_par
    if "continue_on_failure" in data and isinstance(data["continue_on_failure"], bool):
        cfg.continue_on_failure = data["continue_on_failure"]


def load_rule_specs(path: Path) -> dict[str, Any]:
    """Return the raw ``rules`` section of a config file.

    Unlike the engine settings, a broken rules file is an error: provisioning
    with a silently empty rule set would look like success.
    """
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        raise ValueError(f"Cannot read rules from {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    rules = data.get("rules", {})
    if not isinstance(rules, dict):
        raise ValueError(f"'rules' in {path} must be an object")
    return rules
