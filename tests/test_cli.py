"""
Tests for the click command-line interface.
"""

from __future__ import annotations

import json
import logging

import pytest
from click.testing import CliRunner

from exambank import database as db
from exambank.cli import cli

BANK = (
    "## Pregunta 1\n\n¿Qué es X?\n\na) A\nb) B\n\n"
    "## Pregunta 2\n\n¿Incompleta?\n\na) única\n"
)


@pytest.fixture(autouse=True)
def restore_package_logger():
    """The CLI configures the package logger; undo it after each test."""
    package_logger = logging.getLogger("exambank")
    level, handlers = package_logger.level, list(package_logger.handlers)
    yield
    package_logger.setLevel(level)
    package_logger.handlers = handlers


@pytest.fixture
def bank_file(tmp_path):
    path = tmp_path / "Preguntas_Tema1.md"
    path.write_text(BANK, encoding="utf-8")
    return path


def _invoke(tmp_path, *args):
    base = [
        "--db-path", str(tmp_path / "cli.sqlite"),
        "--storage-dir", str(tmp_path / "subjects"),
    ]
    return CliRunner().invoke(cli, base + list(args))


class TestParseBank:

    def test_json_output(self, tmp_path, bank_file):
        result = _invoke(tmp_path, "parse-bank", str(bank_file), "--json-output")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [q["id"] for q in data["questions"]] == [
            "tema1_pregunta1",
            "tema1_pregunta2",
        ]
        assert data["questions"][0]["options"] == {"a": "A", "b": "B"}
        assert data["validation"]["questions_missing_options"] == ["tema1_pregunta2"]
        assert data["failed_files"] == []

    def test_load_stores_complete_questions(self, tmp_path, bank_file):
        result = _invoke(tmp_path, "parse-bank", str(bank_file), "--load", "-s", "fisica")

        assert result.exit_code == 0, result.output
        assert "Validation Report" in result.output
        stored = db.list_questions(db_path=str(tmp_path / "cli.sqlite"))
        assert [q.id for q in stored] == ["tema1_pregunta1"]
        assert stored[0].subject_id == "fisica"


class TestErrors:

    def test_unknown_candidate_exits_nonzero(self, tmp_path):
        result = _invoke(tmp_path, "approve", "missing")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_unknown_document(self, tmp_path):
        result = _invoke(tmp_path, "extract", "missing")
        assert result.exit_code == 1
