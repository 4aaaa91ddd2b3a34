from __future__ import annotations

import json
import shlex
import sys
import threading
import time
from pathlib import Path

import allure
import pytest
from conftest import FakeClock, FakeSpawner, Health

from paired.config import SupervisorSettings
from paired.errors import HealthProbeFailure, RecoveryExhausted, StartupTimeout, StartupWaitTimeout
from paired.hub.supervisor import ProcessSupervisor
from paired.startup.lock import LockManager
from paired.startup.orchestrator import StartupOrchestrator
from paired.startup.phases import ExternalStep, StepOutcome, StepResult, StepRunner
from paired.startup.status import Phase, PhaseStatus, StatusRecorder

pytestmark = [
    allure.epic("Hub Lifecycle"),
    allure.feature("Startup Orchestration"),
]

FAST = SupervisorSettings(
    startup_timeout_seconds=0.5,
    poll_interval_seconds=0.05,
    monitor_interval_seconds=0.1,
    max_retries=1,
    retry_backoff_seconds=0.0,
    stop_grace_seconds=0.1,
)
PYTHON = shlex.quote(sys.executable)


class SlowStepRunner:
    """Completes every step after a delay, counting invocations."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def run(self, step: ExternalStep, *, cwd: Path | None = None) -> StepResult:
        with self._lock:
            self.calls.append(step.name)
        time.sleep(self.delay)
        return StepResult(outcome=StepOutcome.COMPLETE, exit_code=0)


class ScriptedProber:
    def __init__(self, *results: bool) -> None:
        self.results = list(results)

    def __call__(self) -> bool:
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]


def _orchestrator(  # noqa: PLR0913
    home: Path,
    *,
    prober,
    spawner: FakeSpawner,
    step_runner=None,
    assessment: str = "assess",
    introduction: str = "introduce",
    wait_timeout: float = 10.0,
    sleep=time.sleep,
    clock=time.monotonic,
) -> StartupOrchestrator:
    supervisor = ProcessSupervisor(prober=prober, spawner=spawner, settings=FAST)
    orchestrator = StartupOrchestrator(
        lock=LockManager(home / "startup.lock"),
        recorder=StatusRecorder(home / "status.json"),
        supervisor=supervisor,
        prober=prober,
        step_runner=step_runner or SlowStepRunner(),
        assessment=ExternalStep(name="Assessment", command=assessment),
        introduction=ExternalStep(name="Introduction", command=introduction),
        wait_timeout_seconds=wait_timeout,
        wait_poll_seconds=0.05,
        project_path=home,
        sleep=sleep,
        clock=clock,
    )
    supervisor.on_recovery_exhausted = orchestrator.record_recovery_exhausted
    return orchestrator


def test_start_runs_all_phases_and_releases_lock(paired_home: Path) -> None:
    health = Health()
    spawner = FakeSpawner(on_spawn=health.up)
    steps = SlowStepRunner()
    orchestrator = _orchestrator(paired_home, prober=health, spawner=spawner, step_runner=steps)

    outcome = orchestrator.start("cli")

    assert outcome.success and outcome.executed
    assert spawner.calls == 1
    assert steps.calls == ["Assessment", "Introduction"]
    assert outcome.phases == {
        "bridge": "running",
        "agents": "running",
        "assessment": "complete",
        "introduction": "complete",
    }
    assert outcome.record.phase == Phase.INTRODUCTION
    assert outcome.record.state["source"] == "cli"
    assert not (paired_home / "startup.lock").exists()


def test_concurrent_starts_execute_once(paired_home: Path) -> None:
    health = Health()
    spawner = FakeSpawner(on_spawn=health.up)
    steps = SlowStepRunner(delay=0.3)
    callers = 5
    barrier = threading.Barrier(callers)
    outcomes = []
    errors = []

    def _call(index: int) -> None:
        orchestrator = _orchestrator(
            paired_home,
            prober=health,
            spawner=spawner,
            step_runner=steps,
        )
        barrier.wait()
        try:
            outcomes.append(orchestrator.start(f"caller-{index}"))
        except Exception as error:  # noqa: BLE001
            errors.append(error)

    threads = [threading.Thread(target=_call, args=(index,)) for index in range(callers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(outcomes) == callers
    assert sum(outcome.executed for outcome in outcomes) == 1
    assert spawner.calls == 1
    assert steps.calls == ["Assessment", "Introduction"]
    assert all(outcome.success for outcome in outcomes)
    assert len({outcome.record.sequence for outcome in outcomes}) == 1
    assert len({outcome.record.run_id for outcome in outcomes}) == 1


def test_ensure_running_is_noop_when_healthy(paired_home: Path) -> None:
    spawner = FakeSpawner()
    steps = SlowStepRunner()
    orchestrator = _orchestrator(
        paired_home,
        prober=Health(healthy=True),
        spawner=spawner,
        step_runner=steps,
    )

    outcome = orchestrator.ensure_running()

    assert outcome.success
    assert outcome.executed is False
    assert spawner.calls == 0
    assert steps.calls == []


def test_ensure_running_starts_when_down(paired_home: Path) -> None:
    health = Health()
    spawner = FakeSpawner(on_spawn=health.up)
    orchestrator = _orchestrator(paired_home, prober=health, spawner=spawner)

    outcome = orchestrator.ensure_running("hook")

    assert outcome.executed
    assert spawner.calls == 1


def test_bridge_timeout_is_fatal_and_releases_lock(paired_home: Path) -> None:
    steps = SlowStepRunner()
    orchestrator = _orchestrator(
        paired_home,
        prober=Health(),
        spawner=FakeSpawner(),
        step_runner=steps,
    )

    with pytest.raises(StartupTimeout):
        orchestrator.start("cli")

    assert not (paired_home / "startup.lock").exists()
    record = orchestrator.recorder.read()
    assert record.phase == Phase.BRIDGE
    assert record.status == PhaseStatus.ERROR
    assert steps.calls == []


def test_agents_phase_fails_when_bridge_goes_away(paired_home: Path) -> None:
    prober = ScriptedProber(False, True, False)
    orchestrator = _orchestrator(paired_home, prober=prober, spawner=FakeSpawner())

    with pytest.raises(HealthProbeFailure):
        orchestrator.start("cli")

    record = orchestrator.recorder.read()
    assert record.state["bridge"] == "running"
    assert record.state["agents"] == "error"
    assert not (paired_home / "startup.lock").exists()


def test_optional_phase_failure_still_succeeds(paired_home: Path) -> None:
    health = Health()
    orchestrator = _orchestrator(
        paired_home,
        prober=health,
        spawner=FakeSpawner(on_spawn=health.up),
        step_runner=StepRunner(capture_output=True),
        assessment=f"{PYTHON} -c 'raise SystemExit(1)'",
        introduction="",
    )

    outcome = orchestrator.start("cli")

    assert outcome.success
    assert outcome.phases["assessment"] == "error"
    assert outcome.phases["introduction"] == "skipped"
    status = json.loads((paired_home / "status.json").read_text("utf-8"))
    assert status["state"]["assessment"] == "error"


def test_waiter_times_out_when_lock_never_clears(paired_home: Path) -> None:
    LockManager(paired_home / "startup.lock").acquire("someone-else")
    clock = FakeClock()
    orchestrator = _orchestrator(
        paired_home,
        prober=Health(),
        spawner=FakeSpawner(),
        wait_timeout=6.0,
        sleep=clock.sleep,
        clock=clock,
    )

    with pytest.raises(StartupWaitTimeout):
        orchestrator.start("cli")

    assert sum(clock.sleeps) == pytest.approx(6.0)


def test_stop_records_bridge_stopped(paired_home: Path) -> None:
    health = Health()
    spawner = FakeSpawner(on_spawn=health.up)
    orchestrator = _orchestrator(paired_home, prober=health, spawner=spawner)
    orchestrator.start("cli")

    assert orchestrator.stop() is True

    assert spawner.processes[0].terminated
    assert orchestrator.recorder.read().state["bridge"] == "stopped"


def test_status_reports_health_and_lock(paired_home: Path) -> None:
    orchestrator = _orchestrator(paired_home, prober=Health(), spawner=FakeSpawner())
    LockManager(paired_home / "startup.lock").acquire("vscode")

    status = orchestrator.status()

    assert status["running"] is False
    assert status["bridge"] == "stopped"
    assert status["lock_exists"] is True
    assert status["lock"]["source"] == "vscode"
    assert status["last_status"] is None


def test_recovery_exhaustion_is_recorded(paired_home: Path) -> None:
    orchestrator = _orchestrator(paired_home, prober=Health(), spawner=FakeSpawner())

    orchestrator.record_recovery_exhausted(RecoveryExhausted("manual intervention required"))

    record = orchestrator.recorder.read()
    assert record.status == PhaseStatus.ERROR
    assert record.message == "manual intervention required"


def test_end_to_end_with_built_in_steps(paired_home: Path, tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    (project / "pyproject.toml").write_text("[project]\nname = 'demo'\n", "utf-8")
    health = Health()
    orchestrator = _orchestrator(
        paired_home,
        prober=health,
        spawner=FakeSpawner(on_spawn=health.up),
        step_runner=StepRunner(capture_output=True),
        assessment=f"{PYTHON} -m paired.steps.assessment",
        introduction=f"{PYTHON} -m paired.steps.introduction",
    )
    orchestrator.project_path = project

    outcome = orchestrator.start("cli")

    assert outcome.success
    assert outcome.phases["assessment"] == "complete"
    assert outcome.phases["introduction"] == "complete"
    assert outcome.record.message == '✅ PAIRED ready - say "Hi Alex" to begin'
    assert (paired_home / "introduced").exists()
    assert not (paired_home / "startup.lock").exists()
