"""Single-flight startup sequence for the hub and its agents."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from paired.errors import (
    AlreadyLocked,
    HealthProbeFailure,
    RecoveryExhausted,
    StartupError,
    StartupWaitTimeout,
)
from paired.hub.supervisor import ProcessSupervisor
from paired.startup.lock import LockManager
from paired.startup.phases import ExternalStep, StepOutcome, StepResult, StepRunner
from paired.startup.status import Phase, PhaseStatus, StatusRecord, StatusRecorder

logger = logging.getLogger(__name__)

_STEP_STATUS = {
    StepOutcome.COMPLETE: PhaseStatus.COMPLETE,
    StepOutcome.ERROR: PhaseStatus.ERROR,
    StepOutcome.SKIPPED: PhaseStatus.SKIPPED,
}


@dataclass(slots=True)
class StartupOutcome:
    """What a ``start`` caller observes, whether or not it ran the phases."""

    success: bool
    executed: bool
    record: StatusRecord | None
    phases: dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0


class StartupOrchestrator:
    """Acquire lock, start bridge, confirm agents, run auxiliary steps, release.

    Concurrent callers collapse into one execution: whoever loses the lock
    waits for it to clear and reports the winner's final status record.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        lock: LockManager,
        recorder: StatusRecorder,
        supervisor: ProcessSupervisor,
        prober: Callable[[], bool],
        step_runner: StepRunner,
        assessment: ExternalStep,
        introduction: ExternalStep,
        wait_timeout_seconds: float = 60.0,
        wait_poll_seconds: float = 2.0,
        project_path: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.lock = lock
        self.recorder = recorder
        self.supervisor = supervisor
        self.prober = prober
        self.step_runner = step_runner
        self.assessment = assessment
        self.introduction = introduction
        self.wait_timeout_seconds = wait_timeout_seconds
        self.wait_poll_seconds = wait_poll_seconds
        self.project_path = project_path
        self._sleep = sleep
        self._clock = clock

    def start(self, source: str = "unknown") -> StartupOutcome:
        logger.info("Starting PAIRED system (source: %s)", source)
        if self.lock.is_locked():
            logger.info("Startup already in progress, waiting...")
            return self._wait_for_other()

        try:
            self.lock.acquire(source)
        except AlreadyLocked:
            logger.info("Lost the startup race, waiting for the winner...")
            return self._wait_for_other()

        started = self._clock()
        self.recorder.annotate(source=source, started_at=time.time())
        try:
            self._start_bridge()
            self._start_agents()
            self._run_step(Phase.ASSESSMENT, self.assessment)
            self._run_step(Phase.INTRODUCTION, self.introduction)
        except StartupError as error:
            logger.error("Startup failed: %s", error)
            raise
        finally:
            self.lock.release()

        duration = self._clock() - started
        logger.info("PAIRED system fully activated in %.1fs", duration)
        return StartupOutcome(
            success=True,
            executed=True,
            record=self.recorder.read(),
            phases=_phases(self.recorder.state),
            duration_seconds=duration,
        )

    def ensure_running(self, source: str = "check") -> StartupOutcome:
        """Cheap idempotent check; runs the full sequence only when the hub is down."""

        if self.prober():
            logger.info("PAIRED system already running")
            record = self.recorder.read()
            return StartupOutcome(
                success=True,
                executed=False,
                record=record,
                phases=_phases(record.state) if record else {},
            )
        logger.info("PAIRED system not running, starting...")
        return self.start(source)

    def stop(self) -> bool:
        logger.info("Stopping PAIRED system...")
        stopped = self.supervisor.stop()
        self.recorder.update(Phase.BRIDGE, PhaseStatus.STOPPED)
        logger.info("PAIRED system stopped" if stopped else "No bridge process was tracked")
        return stopped

    def status(self) -> dict[str, Any]:
        healthy = self.prober()
        record = self.recorder.read()
        lock = self.lock.read()
        return {
            "running": healthy,
            "bridge": "running" if healthy else "stopped",
            "last_status": record.to_dict() if record else None,
            "lock_exists": self.lock.is_locked(),
            "lock": (
                {"timestamp": lock.timestamp, "source": lock.source, "pid": lock.pid}
                if lock
                else None
            ),
        }

    def record_recovery_exhausted(self, error: RecoveryExhausted) -> None:
        """Supervisor callback: persist the terminal failure for status readers."""

        self.recorder.update(Phase.BRIDGE, PhaseStatus.ERROR, str(error))

    def _start_bridge(self) -> None:
        logger.info("Starting PAIRED bridge...")
        self.recorder.update(Phase.BRIDGE, PhaseStatus.STARTING)
        try:
            self.supervisor.start()
        except StartupError as error:
            logger.error("Bridge startup failed: %s", error)
            self.recorder.update(Phase.BRIDGE, PhaseStatus.ERROR, str(error))
            raise
        self.recorder.update(Phase.BRIDGE, PhaseStatus.RUNNING)

    def _start_agents(self) -> None:
        logger.info("Starting AI agents...")
        self.recorder.update(Phase.AGENTS, PhaseStatus.STARTING)
        if not self.prober():
            error = HealthProbeFailure("Bridge not available for agent communication")
            logger.error("Agent startup failed: %s", error)
            self.recorder.update(Phase.AGENTS, PhaseStatus.ERROR, str(error))
            raise error
        self.recorder.update(Phase.AGENTS, PhaseStatus.RUNNING)

    def _run_step(self, phase: Phase, step: ExternalStep) -> StepResult:
        self.recorder.update(phase, PhaseStatus.STARTING)
        result = self.step_runner.run(step, cwd=self.project_path)
        if result.outcome == StepOutcome.ERROR:
            logger.error("%s failed: %s", phase.value.capitalize(), result.error)
        self.recorder.update(phase, _STEP_STATUS[result.outcome], result.error)
        return result

    def _wait_for_other(self) -> StartupOutcome:
        deadline = self._clock() + self.wait_timeout_seconds
        while self.lock.is_locked():
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise StartupWaitTimeout(
                    "Timeout waiting for startup to complete "
                    f"after {self.wait_timeout_seconds:.0f}s",
                )
            self._sleep(min(self.wait_poll_seconds, remaining))

        logger.info("Startup completed by another caller")
        record = self.recorder.read()
        return StartupOutcome(
            success=record is not None and record.is_ready(),
            executed=False,
            record=record,
            phases=_phases(record.state) if record else {},
        )


def _phases(state: dict[str, Any]) -> dict[str, str]:
    return {phase.value: str(state.get(phase.value, PhaseStatus.PENDING.value)) for phase in Phase}
