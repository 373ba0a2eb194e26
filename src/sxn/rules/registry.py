"""Closed mapping from rule kind names to rule classes."""

from __future__ import annotations

from sxn.rules.base import BaseRule
from sxn.rules.copy_files import CopyFilesRule
from sxn.rules.setup_commands import SetupCommandsRule
from sxn.rules.template import TemplateRule

RuleRegistry = dict[str, type[BaseRule]]

RULE_KINDS: RuleRegistry = {
    CopyFilesRule.kind: CopyFilesRule,
    SetupCommandsRule.kind: SetupCommandsRule,
    TemplateRule.kind: TemplateRule,
}
