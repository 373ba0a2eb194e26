"""Template errors."""

from __future__ import annotations


class TemplateError(Exception):
    pass


class TemplateSyntaxError(TemplateError):
    pass


class TemplateProcessingError(TemplateError):
    pass
