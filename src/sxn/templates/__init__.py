"""Template rendering for session files."""

from sxn.templates.errors import TemplateError, TemplateProcessingError, TemplateSyntaxError
from sxn.templates.processor import TemplateProcessor
from sxn.templates.variables import TemplateVariables

__all__ = [
    "TemplateError",
    "TemplateProcessingError",
    "TemplateProcessor",
    "TemplateSyntaxError",
    "TemplateVariables",
]
