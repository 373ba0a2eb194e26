"""template rule: render project templates into the session."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from sxn.rules.base import BaseRule, thaw_config
from sxn.rules.errors import ApplicationError, ValidationError
from sxn.rules.models import ChangeType
from sxn.security.path_validator import SecurePathValidator
from sxn.templates.errors import TemplateProcessingError, TemplateSyntaxError
from sxn.templates.processor import TemplateProcessor
from sxn.templates.variables import TemplateVariables

SUPPORTED_ENGINES = ("liquid",)
OUTPUT_PERMISSIONS = 0o644


class TemplateRule(BaseRule):
    kind = "template"
    description = "Process template files with variable substitution"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._sources = SecurePathValidator(self.project_root)
        self._destinations = SecurePathValidator(self.session_root)
        self._processor = TemplateProcessor()
        self._variables = TemplateVariables(self.project_root, self.session_root)

    def _validate_rule_specific(self) -> None:
        if "templates" not in self.config:
            raise ValidationError("TemplateRule requires 'templates' configuration")
        templates = self.config["templates"]
        if not isinstance(templates, tuple):
            raise ValidationError("TemplateRule 'templates' must be an array")
        if not templates:
            raise ValidationError("TemplateRule 'templates' cannot be empty")
        for index, entry in enumerate(templates):
            self._validate_entry(entry, index)

    def _validate_entry(self, entry: Any, index: int) -> None:
        if not isinstance(entry, Mapping):
            raise ValidationError(f"Template config {index} must be a mapping")
        if not isinstance(entry.get("source"), str):
            raise ValidationError(f"Template config {index} must have a 'source' string")
        if not isinstance(entry.get("destination"), str):
            raise ValidationError(f"Template config {index} must have a 'destination' string")
        engine = entry.get("engine", "liquid")
        if engine not in SUPPORTED_ENGINES:
            raise ValidationError(
                f"Template config {index} has unsupported engine '{engine}'. "
                f"Supported: {', '.join(SUPPORTED_ENGINES)}"
            )
        if "variables" in entry and not isinstance(entry["variables"], Mapping):
            raise ValidationError(f"Template config {index} 'variables' must be a mapping")
        source = entry["source"]
        if entry.get("required", True) and not (self.project_root / source).exists():
            raise ValidationError(f"Required template file does not exist: {source}")
        destination = entry["destination"]
        if ".." in destination or destination.startswith("/"):
            raise ValidationError(
                f"Template config {index} destination path is not safe: {destination}"
            )

    def _apply(self) -> None:
        rendered = 0
        for entry in self.config["templates"]:
            if self._apply_entry(entry):
                rendered += 1
        self._log(logging.INFO, f"processed {rendered} of {len(self.config['templates'])} templates")

    def _apply_entry(self, entry: Mapping[str, Any]) -> bool:
        source = entry["source"]
        destination = entry["destination"]

        if not (self.project_root / source).exists():
            if entry.get("required", True):
                raise ApplicationError(f"Required template file does not exist: {source}")
            self._log(logging.DEBUG, f"skipping optional missing template: {source}")
            return False

        source_path = self._sources.validate_path(source)
        dest_path = self._destinations.validate_path(destination, allow_creation=True)
        if dest_path.exists() and not entry.get("overwrite", False):
            self._log(logging.WARNING, f"destination already exists, skipping: {destination}")
            return False

        text = source_path.read_text()
        try:
            content = self._processor.process(text, self._build_variables(entry))
        except TemplateSyntaxError as e:
            raise ApplicationError(f"Template syntax error in {source}: {e}") from e
        except TemplateProcessingError as e:
            raise ApplicationError(f"Template processing error for {source}: {e}") from e

        self._make_parents(dest_path)
        self._backup_existing(dest_path)
        _ = dest_path.write_text(content)
        dest_path.chmod(OUTPUT_PERMISSIONS)
        _ = self.track_change(
            ChangeType.FILE_CREATED,
            dest_path,
            {
                "source": str(source_path),
                "template": True,
                "variables_used": self._processor.extract_variables(text),
            },
        )
        return True

    def _build_variables(self, entry: Mapping[str, Any]) -> dict[str, Any]:
        variables = self._variables.build(thaw_config(entry.get("variables", {})))
        variables["template"] = {
            "source": entry["source"],
            "destination": entry["destination"],
            "processed_at": datetime.now(UTC).isoformat(),
        }
        return variables
