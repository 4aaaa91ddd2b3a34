from __future__ import annotations

import shlex
import sys
from pathlib import Path

import allure

from paired.startup.phases import (
    TIMEOUT_EXIT_CODE,
    ExternalStep,
    StepOutcome,
    StepRunner,
)

pytestmark = [
    allure.epic("Hub Lifecycle"),
    allure.feature("Auxiliary Steps"),
]

PYTHON = shlex.quote(sys.executable)


def _step(code: str, *, timeout: float = 30.0) -> ExternalStep:
    return ExternalStep(
        name="Assessment",
        command=f"{PYTHON} -c {shlex.quote(code)}",
        timeout_seconds=timeout,
    )


def test_zero_exit_is_complete(tmp_path: Path) -> None:
    result = StepRunner(capture_output=True).run(_step("pass"), cwd=tmp_path)

    assert result.outcome == StepOutcome.COMPLETE
    assert result.exit_code == 0
    assert result.error is None


def test_non_zero_exit_is_error_with_code(tmp_path: Path) -> None:
    result = StepRunner(capture_output=True).run(_step("raise SystemExit(3)"), cwd=tmp_path)

    assert result.outcome == StepOutcome.ERROR
    assert result.exit_code == 3
    assert result.error == "Assessment process exited with code 3"


def test_empty_command_is_skipped(tmp_path: Path) -> None:
    result = StepRunner().run(ExternalStep(name="Introduction", command="  "), cwd=tmp_path)

    assert result.outcome == StepOutcome.SKIPPED


def test_missing_executable_is_error(tmp_path: Path) -> None:
    step = ExternalStep(name="Assessment", command="definitely-not-a-paired-binary --x")

    result = StepRunner(capture_output=True).run(step, cwd=tmp_path)

    assert result.outcome == StepOutcome.ERROR
    assert "command not found" in result.error


def test_timeout_terminates_step(tmp_path: Path) -> None:
    result = StepRunner(capture_output=True).run(
        _step("import time; time.sleep(30)", timeout=0.5),
        cwd=tmp_path,
    )

    assert result.outcome == StepOutcome.ERROR
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert "timed out" in result.error


def test_step_sees_project_path(tmp_path: Path) -> None:
    marker = tmp_path / "seen.txt"
    code = (
        "import os, pathlib; "
        f"pathlib.Path({str(marker)!r}).write_text(os.environ['PAIRED_PROJECT_PATH'] + '|' + os.getcwd())"
    )

    result = StepRunner(capture_output=True).run(_step(code), cwd=tmp_path)

    assert result.outcome == StepOutcome.COMPLETE
    env_path, cwd = marker.read_text().split("|")
    assert Path(env_path) == tmp_path
    assert Path(cwd).resolve() == tmp_path.resolve()


def test_unknown_placeholder_is_error(tmp_path: Path) -> None:
    step = ExternalStep(name="Assessment", command="echo {unknown}")

    result = StepRunner().run(step, cwd=tmp_path)

    assert result.outcome == StepOutcome.ERROR
    assert "placeholder" in result.error
