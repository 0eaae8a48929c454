"""
Smoke Tests for CLI Commands.

These tests verify that CLI commands run against a throwaway SQLite
database and exit with the expected codes. They don't validate
correctness deeply - just that commands work end to end.

Usage:
    pytest tests/smoke/test_cli_commands.py -v
    pytest -m smoke
"""

import sys
from datetime import UTC, datetime, timedelta

import pytest
from loguru import logger
from typer.testing import CliRunner

from config import get_settings
from mastery_hub.cli.main import app
from mastery_hub.db import database

pytestmark = pytest.mark.smoke

CURRICULUM = """\
units:
  - {id: civ, code: CIV, name: Civil Procedure, exam_weight: 0.6}
  - {id: crim, code: CRIM, name: Criminal Law, exam_weight: 0.4}
skills:
  - {id: civ-juris, code: CIV-01, unit: CIV, name: Jurisdiction, exam_weight: 0.5, difficulty_tier: foundation}
  - {id: civ-venue, code: CIV-02, unit: CIV, name: Venue, exam_weight: 0.5, prerequisites: [CIV-01]}
  - {id: crim-actus, code: CRIM-01, unit: CRIM, name: Actus reus, exam_weight: 1.0}
"""

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI callback binds loguru to the runner's captured stderr."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point settings and the default engine at a temporary database."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.delenv("GRADER_URL", raising=False)
    monkeypatch.delenv("CONTENT_PROVIDER_URL", raising=False)
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_SessionLocal", None)
    get_settings.cache_clear()

    curriculum = tmp_path / "curriculum.yaml"
    curriculum.write_text(CURRICULUM, encoding="utf-8")
    yield curriculum

    if database._engine is not None:
        database._engine.dispose()
    get_settings.cache_clear()


def invoke(*args):
    return runner.invoke(app, [str(a) for a in args])


def exam_date(days: int) -> str:
    return (datetime.now(UTC).date() + timedelta(days=days)).isoformat()


class TestCLIHelp:
    """Test that help commands work."""

    def test_main_help(self):
        result = invoke("--help")

        assert result.exit_code == 0
        assert "plan" in result.output
        assert "onboard" in result.output

    @pytest.mark.parametrize("command", ["plan", "attempt", "onboard", "remediate", "gates", "pacing"])
    def test_command_help(self, command):
        assert invoke(command, "--help").exit_code == 0


class TestCLIFlow:
    """Load a curriculum, onboard, plan and practise."""

    @pytest.fixture
    def ready(self, cli_env):
        assert invoke("init-db").exit_code == 0
        result = invoke("load-curriculum", cli_env)
        assert result.exit_code == 0, result.output
        assert "3 skills" in result.output

    def test_plan_requires_onboarding(self, ready):
        result = invoke("plan", "alice")

        assert result.exit_code == 2
        assert "onboard" in result.output

    def test_onboard_then_plan(self, ready):
        result = invoke("onboard", "alice", "--exam-date", exam_date(100), "--weak", "CRIM")
        assert result.exit_code == 0, result.output
        assert "intensive" in result.output

        result = invoke("plan", "alice")
        assert result.exit_code == 0, result.output
        assert "Total:" in result.output

        assert invoke("plan", "alice", "--refresh").exit_code == 0

    def test_attempt_review_and_diagnostics(self, ready):
        result = invoke("attempt", "alice", "q1", "--skill", "civ-juris", "--score", "0.4")
        assert result.exit_code == 0, result.output

        assert invoke("review", "alice", "q1", "4").exit_code == 0
        assert invoke("gates", "alice", "civ-juris").exit_code == 0
        result = invoke("remediate", "alice")
        assert result.exit_code == 0
        assert "SEVERE" in result.output
        assert invoke("rankings").exit_code == 0

    def test_invalid_input_exit_codes(self, ready):
        assert invoke("attempt", "alice", "q1", "--skill", "ghost", "--score", "0.5").exit_code == 1
        assert invoke("attempt", "alice", "q1", "--skill", "civ-juris", "--score", "1.5").exit_code == 1
        assert invoke("review", "alice", "never-seen", "3").exit_code == 1
        assert invoke("onboard", "alice", "--exam-date", "next tuesday").exit_code == 1
        assert invoke("item", "start", "missing").exit_code == 1


class TestCLIStandalone:
    def test_pacing(self):
        result = invoke("pacing", "--since-break", "30", "--minutes-studied", "30")

        assert result.exit_code == 0
        assert "Break" in result.output

    def test_pacing_bad_scores(self):
        assert invoke("pacing", "--scores", "0.5,abc").exit_code == 1

    def test_info(self, cli_env):
        result = invoke("info")

        assert result.exit_code == 0
        assert "sqlite" in result.output
