from __future__ import annotations

from pathlib import Path

import allure

from paired.routing.agents import AGENTS
from paired.steps import assessment, introduction

pytestmark = [
    allure.epic("Hub Lifecycle"),
    allure.feature("Built-in Steps"),
]


def test_assessment_reports_fresh_project(tmp_path: Path, capsys) -> None:
    assert assessment.main([str(tmp_path)]) == 0

    assert capsys.readouterr().out.strip() == f"Fresh project at {tmp_path.resolve()}: no files yet."


def test_assessment_counts_languages_and_markers(tmp_path: Path, capsys) -> None:
    (tmp_path / "pyproject.toml").write_text("", "utf-8")
    (tmp_path / "app.py").write_text("", "utf-8")
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "util.py").write_text("", "utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("", "utf-8")

    assert assessment.main([str(tmp_path)]) == 0

    out = capsys.readouterr().out
    assert "Existing project" in out
    assert "3 files" in out
    assert "Detected: Python project." in out
    assert "Python (2)" in out
    assert "JavaScript" not in out


def test_assessment_uses_project_path_env(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("PAIRED_PROJECT_PATH", str(tmp_path))

    assert assessment.main([]) == 0

    assert str(tmp_path.resolve()) in capsys.readouterr().out


def test_assessment_rejects_missing_directory(tmp_path: Path) -> None:
    assert assessment.main([str(tmp_path / "missing")]) == 2


def test_introduction_prints_team_and_writes_marker(paired_home: Path, capsys) -> None:
    assert introduction.main([]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Meet your PAIRED team:"
    assert len(out) == len(AGENTS) + 1
    assert "Sherlock (QA)" in out[2]
    assert (paired_home / introduction.MARKER_NAME).exists()
