"""Controllers for startup, supervision and routing CLI commands."""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path

from paired.config import Settings
from paired.errors import PairedError
from paired.hub.client import HubClient
from paired.hub.probe import HealthProber
from paired.hub.supervisor import ProcessSupervisor, SubprocessHubSpawner
from paired.logs import configure_logging
from paired.routing.agents import AgentTable, build_agent_table
from paired.routing.router import MessageRouter
from paired.startup.lock import LockManager
from paired.startup.orchestrator import StartupOrchestrator, StartupOutcome
from paired.startup.phases import ExternalStep, StepRunner
from paired.startup.status import StatusRecorder


@dataclass(slots=True)
class StartCommand:
    """CLI input for ``start`` and ``ensure``."""

    source: str
    ensure: bool = False
    project_path: Path | None = None


@dataclass(slots=True)
class RouteCommand:
    """CLI input for sending free text to the team."""

    text: str
    project_path: Path | None = None
    output_format: str = "text"


@dataclass(slots=True)
class CommandResult:
    """Lines to print plus the process exit status."""

    lines: list[str]
    success: bool


def build_orchestrator(settings: Settings, *, project_path: Path | None = None) -> StartupOrchestrator:
    """Wire lock, recorder, supervisor and steps from settings."""

    prober = HealthProber(
        host=settings.hub.host,
        port=settings.hub.port,
        timeout_ms=int(settings.hub.health_timeout_seconds * 1000),
    )
    recorder = StatusRecorder(settings.status_path)
    supervisor = ProcessSupervisor(
        prober=prober,
        spawner=SubprocessHubSpawner(
            host=settings.hub.host,
            port=settings.hub.port,
            log_path=settings.hub_log_path,
            cwd=settings.home,
        ),
        settings=settings.supervisor,
        pid_path=settings.pid_path,
    )
    orchestrator = StartupOrchestrator(
        lock=LockManager(
            settings.lock_path,
            stale_after_seconds=settings.startup.lock_stale_after_seconds,
        ),
        recorder=recorder,
        supervisor=supervisor,
        prober=prober,
        step_runner=StepRunner(),
        assessment=ExternalStep(
            name="Assessment",
            command=settings.startup.assessment_command,
            timeout_seconds=settings.startup.step_timeout_seconds,
        ),
        introduction=ExternalStep(
            name="Introduction",
            command=settings.startup.introduction_command,
            timeout_seconds=settings.startup.step_timeout_seconds,
        ),
        wait_timeout_seconds=settings.startup.wait_timeout_seconds,
        wait_poll_seconds=settings.startup.wait_poll_seconds,
        project_path=project_path,
    )
    supervisor.on_recovery_exhausted = orchestrator.record_recovery_exhausted
    return orchestrator


def build_router(settings: Settings, agents: AgentTable | None = None) -> MessageRouter:
    return MessageRouter(
        agents=agents or build_agent_table(settings.routing.default_agent),
        transport=HubClient(host=settings.hub.host, port=settings.hub.port),
        timeout_seconds=settings.routing.route_timeout_seconds,
    )


class StartupCliController:
    """Coordinates start/ensure/stop/status/route/monitor CLI operations."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            settings = Settings.from_env()
            settings.validate(known_agents=build_agent_table().ids)
            configure_logging(settings)
            self._settings = settings
        return self._settings

    def start(self, command: StartCommand) -> CommandResult:
        orchestrator = build_orchestrator(self.settings, project_path=command.project_path)
        try:
            if command.ensure:
                outcome = orchestrator.ensure_running(command.source)
            else:
                outcome = orchestrator.start(command.source)
        except PairedError as error:
            return CommandResult(lines=[f"Startup failed: {error}"], success=False)
        return CommandResult(lines=_outcome_lines(outcome), success=outcome.success)

    def stop(self) -> CommandResult:
        orchestrator = build_orchestrator(self.settings)
        stopped = orchestrator.stop()
        return CommandResult(
            lines=["PAIRED system stopped" if stopped else "PAIRED bridge was not running"],
            success=True,
        )

    def status(self) -> CommandResult:
        payload = build_orchestrator(self.settings).status()
        return CommandResult(
            lines=[json.dumps(payload, indent=2, ensure_ascii=False)],
            success=bool(payload["running"]),
        )

    def route(self, command: RouteCommand) -> CommandResult:
        router = build_router(self.settings)
        project_path = str(command.project_path) if command.project_path else os.getcwd()
        envelope = router.route(command.text, project_path)
        if envelope is None:
            return CommandResult(
                lines=["No agent matched; message not routed."],
                success=False,
            )
        if command.output_format == "json":
            lines = [json.dumps(envelope.to_dict(), indent=2, ensure_ascii=False)]
        else:
            lines = envelope.text.splitlines()
        return CommandResult(lines=lines, success=envelope.ok)

    def agents(self) -> CommandResult:
        table = build_agent_table(self.settings.routing.default_agent)
        lines = []
        for agent in table.agents:
            marker = " (default)" if agent.id == table.default_agent else ""
            lines.append(
                f"{agent.emoji} {agent.id:<9} {agent.display_name}{marker}: "
                f"{', '.join(agent.aliases)}",
            )
        return CommandResult(lines=lines, success=True)

    def monitor(self, stop_event: threading.Event) -> CommandResult:
        orchestrator = build_orchestrator(self.settings)
        orchestrator.supervisor.run_monitor(stop_event)
        return CommandResult(lines=["Monitoring stopped"], success=True)


def _outcome_lines(outcome: StartupOutcome) -> list[str]:
    if outcome.executed:
        header = f"PAIRED system started in {outcome.duration_seconds:.1f}s"
    elif outcome.success:
        header = "PAIRED system already running"
    else:
        header = "Concurrent startup finished without a ready system"
    lines = [header]
    lines.extend(f"  {phase}: {status}" for phase, status in outcome.phases.items())
    if outcome.record is not None:
        lines.append(outcome.record.message)
    return lines
