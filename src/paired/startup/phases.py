"""Best-effort external steps run during startup (assessment, introduction)."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


class StepOutcome(str, Enum):
    """Tri-state result so a degraded phase stays distinguishable from a fatal one."""

    COMPLETE = "complete"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(slots=True)
class StepResult:
    """Outcome of one external step invocation."""

    outcome: StepOutcome
    exit_code: int | None = None
    error: str | None = None
    elapsed_seconds: float = 0.0


@dataclass(slots=True)
class ExternalStep:
    """Command line of an auxiliary step; empty command disables the step."""

    name: str
    command: str
    timeout_seconds: float = 120.0


class StepRunner:
    """Run external steps with the working directory as project context.

    Only the exit code matters: output is inherited so the user sees it, and
    nothing is parsed.
    """

    def __init__(self, *, env: dict[str, str] | None = None, capture_output: bool = False) -> None:
        self.env = env
        self.capture_output = capture_output

    def run(self, step: ExternalStep, *, cwd: Path | None = None) -> StepResult:
        if not step.command.strip():
            return StepResult(outcome=StepOutcome.SKIPPED)

        working_dir = cwd or Path.cwd()
        try:
            argv = _build_argv(step.command, project_path=working_dir)
        except ValueError as error:
            return StepResult(outcome=StepOutcome.ERROR, error=str(error))

        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        env["PAIRED_PROJECT_PATH"] = str(working_dir)

        output = subprocess.DEVNULL if self.capture_output else None
        started = time.monotonic()
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=working_dir,
                env=env,
                stdout=output,
                stderr=output,
            )
        except FileNotFoundError:
            return StepResult(
                outcome=StepOutcome.ERROR,
                error=f"{step.name} command not found: {argv[0]}",
            )
        except OSError as error:
            return StepResult(
                outcome=StepOutcome.ERROR,
                error=f"{step.name} failed to start: {error}",
            )

        try:
            exit_code = process.wait(timeout=step.timeout_seconds)
        except subprocess.TimeoutExpired:
            terminate_process(process)
            return StepResult(
                outcome=StepOutcome.ERROR,
                exit_code=TIMEOUT_EXIT_CODE,
                error=f"{step.name} timed out after {step.timeout_seconds:.0f}s",
                elapsed_seconds=time.monotonic() - started,
            )

        elapsed = time.monotonic() - started
        if exit_code != 0:
            return StepResult(
                outcome=StepOutcome.ERROR,
                exit_code=exit_code,
                error=f"{step.name} process exited with code {exit_code}",
                elapsed_seconds=elapsed,
            )
        logger.info("%s step finished in %.1fs", step.name, elapsed)
        return StepResult(outcome=StepOutcome.COMPLETE, exit_code=0, elapsed_seconds=elapsed)


def _build_argv(command: str, *, project_path: Path) -> list[str]:
    try:
        rendered = command.strip().format(project_path=shlex.quote(str(project_path)))
    except (KeyError, IndexError) as error:
        raise ValueError(f"Unsupported command placeholder: {error}") from error
    argv = shlex.split(rendered)
    if not argv:
        raise ValueError("Step command rendered empty command.")
    return argv


def terminate_process(
    process: subprocess.Popen[str] | subprocess.Popen[bytes],
    *,
    grace_seconds: float = 2.0,
) -> None:
    """SIGTERM, wait for the grace window, then SIGKILL."""

    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=grace_seconds)
