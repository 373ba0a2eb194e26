"""Sandboxed Liquid rendering for session templates.

Templates are rendered by python-liquid with a restricted environment: only
the filters in ``ALLOWED_FILTERS`` are registered and the ``include`` and
``render`` tags are removed, so a template can neither read other files nor
call anything beyond plain formatting.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from liquid import Environment, StrictDefaultUndefined, Undefined
from liquid.exceptions import LiquidError, LiquidSyntaxError

from sxn.templates.errors import TemplateProcessingError, TemplateSyntaxError

MAX_TEMPLATE_SIZE = 1024 * 1024

ALLOWED_FILTERS = frozenset(
    {
        "upcase", "downcase", "capitalize",
        "strip", "lstrip", "rstrip",
        "size",
        "first", "last",
        "join", "split",
        "sort", "sort_natural", "reverse",
        "uniq", "compact",
        "date",
        "default",
        "escape", "escape_once",
        "truncate", "truncatewords",
        "replace", "replace_first",
        "remove", "remove_first",
        "plus", "minus", "times", "divided_by", "modulo",
        "abs", "ceil", "floor", "round",
        "at_least", "at_most",
    }
)  # fmt: skip

BLOCKED_TAGS = ("include", "render")

_OUTPUT_VARIABLE = re.compile(r"\{\{-?\s*([A-Za-z_]\w*)")
_CONDITION_VARIABLE = re.compile(r"\{%-?\s*(?:if|unless|elsif)\s+([A-Za-z_]\w*)")
_LOOP_VARIABLE = re.compile(r"\{%-?\s*for\s+\w+\s+in\s+([A-Za-z_]\w*)")


def _secure_environment(undefined: type[Undefined]) -> Environment:
    env = Environment(undefined=undefined)
    for name in list(env.filters):
        if name not in ALLOWED_FILTERS:
            del env.filters[name]
    for tag in BLOCKED_TAGS:
        _ = env.tags.pop(tag, None)
    return env


class TemplateProcessor:
    def __init__(self) -> None:
        self._lenient = _secure_environment(Undefined)
        self._strict = _secure_environment(StrictDefaultUndefined)

    def validate_syntax(self, template: str) -> bool:
        """Raise TemplateSyntaxError if the template cannot be parsed."""
        _check_size(template)
        try:
            _ = self._lenient.from_string(template)
        except LiquidSyntaxError as e:
            raise TemplateSyntaxError(f"Template syntax error: {e}") from e
        except LiquidError as e:
            raise TemplateProcessingError(f"Template processing failed: {e}") from e
        return True

    def process(
        self,
        template: str,
        variables: Mapping[str, Any] | None = None,
        *,
        strict: bool = False,
    ) -> str:
        """Render ``template``. In strict mode undefined variables are errors,
        unless the expression supplies a ``default``."""
        _check_size(template)
        env = self._strict if strict else self._lenient
        try:
            parsed = env.from_string(template)
        except LiquidSyntaxError as e:
            raise TemplateSyntaxError(f"Template syntax error: {e}") from e
        except LiquidError as e:
            raise TemplateProcessingError(f"Template processing failed: {e}") from e
        try:
            return parsed.render(**dict(variables or {}))
        except LiquidError as e:
            raise TemplateProcessingError(f"Template processing failed: {e}") from e

    def extract_variables(self, template: str) -> list[str]:
        """Top-level names used in output expressions, conditions and loops."""
        names: set[str] = set()
        for pattern in (_OUTPUT_VARIABLE, _CONDITION_VARIABLE, _LOOP_VARIABLE):
            names.update(pattern.findall(template))
        return sorted(names)


def _check_size(template: str) -> None:
    size = len(template.encode())
    if size > MAX_TEMPLATE_SIZE:
        raise TemplateProcessingError(
            f"Template too large: {size} bytes (max {MAX_TEMPLATE_SIZE})"
        )
