"""Shared fixtures for sxn tests."""

import threading
import time
from pathlib import Path
from typing import ClassVar

import pytest

from sxn.rules.base import BaseRule
from sxn.rules.engine import RulesEngine
from sxn.rules.errors import ValidationError
from sxn.rules.models import ChangeType


class JournalRule(BaseRule):
    """Test double driven entirely by its config.

    Config keys: ``create`` (session-relative file to write), ``delay``
    (seconds to sleep inside apply), ``fail`` (raise inside apply),
    ``invalid`` (fail validation). Every apply and rollback is journaled.
    """

    kind = "journal"
    description = "Test rule that records what it does"

    journal: ClassVar[list[tuple[str, str]]] = []
    active: ClassVar[int] = 0
    peak: ClassVar[int] = 0
    _guard: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def reset(cls) -> None:
        cls.journal = []
        cls.active = 0
        cls.peak = 0

    @classmethod
    def events(cls, event: str) -> list[str]:
        return [name for kind, name in cls.journal if kind == event]

    def _validate_rule_specific(self) -> None:
        if self.config.get("invalid"):
            raise ValidationError("configured to be invalid")

    def _apply(self) -> None:
        with JournalRule._guard:
            JournalRule.active += 1
            JournalRule.peak = max(JournalRule.peak, JournalRule.active)
            JournalRule.journal.append(("start", self.name))
        try:
            time.sleep(self.config.get("delay", 0))
            target = self.config.get("create")
            if target:
                path = self.session_root / target
                _ = path.write_text(self.name)
                _ = self.track_change(ChangeType.FILE_CREATED, path)
            if self.config.get("fail"):
                raise RuntimeError(f"{self.name} exploded")
        finally:
            with JournalRule._guard:
                JournalRule.active -= 1
                JournalRule.journal.append(("end", self.name))

    def rollback(self) -> bool:
        with JournalRule._guard:
            JournalRule.journal.append(("rollback", self.name))
        return super().rollback()


FAKE_KINDS: dict[str, type[BaseRule]] = {"journal": JournalRule}


def journal_spec(*dependencies: str, **config: object) -> dict[str, object]:
    return {"type": "journal", "config": config, "dependencies": list(dependencies)}


@pytest.fixture(autouse=True)
def _reset_journal():
    JournalRule.reset()
    yield
    JournalRule.reset()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def session_root(tmp_path: Path) -> Path:
    root = tmp_path / "session"
    root.mkdir()
    return root


@pytest.fixture
def engine(project_root: Path, session_root: Path) -> RulesEngine:
    """Engine whose registry only knows the journal test rule."""
    return RulesEngine(project_root, session_root, registry=FAKE_KINDS)
