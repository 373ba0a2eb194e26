"""Tests for rule kind descriptions, templates and default suggestions."""

from pathlib import Path

import pytest

from sxn.rules.engine import RulesEngine
from sxn.rules.suggest import describe_rule_kinds, generate_rule_template, suggest_default_rules


def _touch(root: Path, *names: str, content: str = "") -> None:
    for name in names:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        _ = path.write_text(content)


class TestDescribeRuleKinds:
    def test_lists_every_kind(self):
        kinds = describe_rule_kinds()
        assert [k["name"] for k in kinds] == ["copy_files", "setup_commands", "template"]
        assert all(k["description"] for k in kinds)
        assert all(k["example"] for k in kinds)


class TestGenerateRuleTemplate:
    def test_rails_copy_files(self):
        template = generate_rule_template("copy_files", "rails")
        assert template["type"] == "copy_files"
        sources = [f["source"] for f in template["config"]["files"]]
        assert "config/master.key" in sources

    def test_javascript_setup_commands(self):
        template = generate_rule_template("setup_commands", "react")
        assert template["config"]["commands"] == [{"command": ["npm", "install"]}]

    def test_python_setup_commands(self):
        template = generate_rule_template("setup_commands", "django")
        assert template["config"]["commands"][0]["command"][0] == "pip"

    def test_generic_setup_commands(self):
        template = generate_rule_template("setup_commands")
        assert template["config"]["commands"] == [{"command": ["make", "setup"]}]

    def test_template_kind(self):
        template = generate_rule_template("template")
        assert template["config"]["templates"][0]["destination"] == "SESSION_INFO.md"

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown rule kind: magic"):
            _ = generate_rule_template("magic")


class TestSuggestDefaultRules:
    def test_rails_project(self, tmp_path: Path):
        _touch(tmp_path, "Gemfile", "Gemfile.lock", "config/application.rb", "config/master.key")
        rules = suggest_default_rules(tmp_path)
        assert set(rules) == {"copy_files", "setup_commands", "templates"}
        assert rules["setup_commands"]["dependencies"] == ["copy_files"]
        commands = [c["command"] for c in rules["setup_commands"]["config"]["commands"]]
        assert commands[0] == ["bundle", "install"]
        assert ["bin/rails", "db:migrate"] in commands
        sources = [f["source"] for f in rules["copy_files"]["config"]["files"]]
        assert sources.count("config/master.key") == 1

    def test_yarn_project(self, tmp_path: Path):
        _touch(tmp_path, "package.json", content='{"dependencies": {"react": "18"}}')
        _touch(tmp_path, "yarn.lock")
        rules = suggest_default_rules(tmp_path)
        commands = [c["command"] for c in rules["setup_commands"]["config"]["commands"]]
        assert commands == [["yarn", "install"], ["yarn", "build"]]

    def test_extra_sensitive_files_added(self, tmp_path: Path):
        _touch(tmp_path, "requirements.txt", "server.pem", ".env.test")
        files = suggest_default_rules(tmp_path)["copy_files"]["config"]["files"]
        by_source = {f["source"]: f["strategy"] for f in files}
        assert by_source["server.pem"] == "copy"
        assert by_source[".env.test"] == "symlink"

    def test_unknown_project_only_templates(self, tmp_path: Path):
        rules = suggest_default_rules(tmp_path)
        assert set(rules) == {"templates"}

    def test_suggestions_validate(self, tmp_path: Path):
        project = tmp_path / "project"
        session = tmp_path / "session"
        session.mkdir()
        _touch(project, "requirements.txt", ".env")
        rules = suggest_default_rules(project)
        rules.pop("setup_commands", None)
        engine = RulesEngine(project, session)
        assert [r.name for r in engine.validate_rules_config(rules)] == ["copy_files", "templates"]
