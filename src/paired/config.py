"""Runtime configuration for the hub, its supervisor and the router."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BRIDGE_PORT = 7890
DEFAULT_ASSESSMENT_COMMAND = f"{sys.executable} -m paired.steps.assessment"
DEFAULT_INTRODUCTION_COMMAND = f"{sys.executable} -m paired.steps.introduction"


@dataclass(slots=True)
class HubSettings:
    """Where the hub listens and how long health checks may take."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_BRIDGE_PORT
    health_timeout_seconds: float = 5.0

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"


@dataclass(slots=True)
class SupervisorSettings:
    """Process supervision timings and recovery bounds."""

    startup_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 1.0
    monitor_interval_seconds: float = 5.0
    max_retries: int = 3
    retry_backoff_seconds: float = 2.0
    stop_grace_seconds: float = 1.0


@dataclass(slots=True)
class StartupSettings:
    """Single-flight startup sequence settings."""

    lock_stale_after_seconds: float = 300.0
    wait_timeout_seconds: float = 60.0
    wait_poll_seconds: float = 2.0
    assessment_command: str = DEFAULT_ASSESSMENT_COMMAND
    introduction_command: str = DEFAULT_INTRODUCTION_COMMAND
    step_timeout_seconds: float = 120.0


@dataclass(slots=True)
class RoutingSettings:
    """Message routing settings."""

    default_agent: str = "alex"
    route_timeout_seconds: float = 3.0
    agent_command: str = ""
    agent_timeout_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    home: Path = field(default_factory=lambda: Path.home() / ".paired")
    hub: HubSettings = field(default_factory=HubSettings)
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    startup: StartupSettings = field(default_factory=StartupSettings)
    routing: RoutingSettings = field(default_factory=RoutingSettings)
    log_level: str = "INFO"

    @property
    def lock_path(self) -> Path:
        return self.home / "startup.lock"

    @property
    def status_path(self) -> Path:
        return self.home / "status.json"

    @property
    def log_path(self) -> Path:
        return self.home / "logs" / "startup.log"

    @property
    def hub_log_path(self) -> Path:
        return self.home / "logs" / "hub.log"

    @property
    def pid_path(self) -> Path:
        return self.home / "pids" / "hub.pid"

    @classmethod
    def from_env(cls, home: Path | None = None) -> Settings:
        """Load settings from environment with defaults for a local install."""

        env_home = os.getenv("PAIRED_HOME", "").strip()
        return cls(
            home=home or (Path(env_home).expanduser() if env_home else Path.home() / ".paired"),
            hub=HubSettings(
                host=os.getenv("PAIRED_BRIDGE_HOST", "127.0.0.1"),
                port=_env_int("PAIRED_BRIDGE_PORT", DEFAULT_BRIDGE_PORT),
                health_timeout_seconds=_env_float("PAIRED_HEALTH_TIMEOUT_SECONDS", 5.0),
            ),
            supervisor=SupervisorSettings(
                startup_timeout_seconds=_env_float("PAIRED_STARTUP_TIMEOUT_SECONDS", 10.0),
                poll_interval_seconds=_env_float("PAIRED_POLL_INTERVAL_SECONDS", 1.0),
                monitor_interval_seconds=_env_float("PAIRED_MONITOR_INTERVAL_SECONDS", 5.0),
                max_retries=_env_int("PAIRED_MAX_RETRIES", 3),
                retry_backoff_seconds=_env_float("PAIRED_RETRY_BACKOFF_SECONDS", 2.0),
                stop_grace_seconds=_env_float("PAIRED_STOP_GRACE_SECONDS", 1.0),
            ),
            startup=StartupSettings(
                lock_stale_after_seconds=_env_float("PAIRED_LOCK_STALE_AFTER_SECONDS", 300.0),
                wait_timeout_seconds=_env_float("PAIRED_WAIT_TIMEOUT_SECONDS", 60.0),
                wait_poll_seconds=_env_float("PAIRED_WAIT_POLL_SECONDS", 2.0),
                assessment_command=os.getenv(
                    "PAIRED_ASSESSMENT_COMMAND",
                    DEFAULT_ASSESSMENT_COMMAND,
                ),
                introduction_command=os.getenv(
                    "PAIRED_INTRODUCTION_COMMAND",
                    DEFAULT_INTRODUCTION_COMMAND,
                ),
                step_timeout_seconds=_env_float("PAIRED_STEP_TIMEOUT_SECONDS", 120.0),
            ),
            routing=RoutingSettings(
                default_agent=os.getenv("PAIRED_DEFAULT_AGENT", "alex").strip().lower(),
                route_timeout_seconds=_env_float("PAIRED_ROUTE_TIMEOUT_SECONDS", 3.0),
                agent_command=os.getenv("PAIRED_AGENT_COMMAND", ""),
                agent_timeout_seconds=_env_float("PAIRED_AGENT_TIMEOUT_SECONDS", 30.0),
            ),
            log_level=os.getenv("PAIRED_LOG_LEVEL", "INFO").strip().upper(),
        )

    def validate(self, known_agents: tuple[str, ...] = ()) -> None:
        """Raise configuration error on out-of-range values."""

        if not 1 <= self.hub.port <= 65_535:  # noqa: PLR2004
            raise ValueError(f"PAIRED_BRIDGE_PORT must be in 1..65535, got {self.hub.port}.")
        positive = {
            "PAIRED_HEALTH_TIMEOUT_SECONDS": self.hub.health_timeout_seconds,
            "PAIRED_STARTUP_TIMEOUT_SECONDS": self.supervisor.startup_timeout_seconds,
            "PAIRED_POLL_INTERVAL_SECONDS": self.supervisor.poll_interval_seconds,
            "PAIRED_MONITOR_INTERVAL_SECONDS": self.supervisor.monitor_interval_seconds,
            "PAIRED_LOCK_STALE_AFTER_SECONDS": self.startup.lock_stale_after_seconds,
            "PAIRED_WAIT_TIMEOUT_SECONDS": self.startup.wait_timeout_seconds,
            "PAIRED_WAIT_POLL_SECONDS": self.startup.wait_poll_seconds,
            "PAIRED_STEP_TIMEOUT_SECONDS": self.startup.step_timeout_seconds,
            "PAIRED_ROUTE_TIMEOUT_SECONDS": self.routing.route_timeout_seconds,
            "PAIRED_AGENT_TIMEOUT_SECONDS": self.routing.agent_timeout_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if self.supervisor.max_retries < 0:
            raise ValueError("PAIRED_MAX_RETRIES must be >= 0.")
        if self.supervisor.retry_backoff_seconds < 0:
            raise ValueError("PAIRED_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.supervisor.stop_grace_seconds < 0:
            raise ValueError("PAIRED_STOP_GRACE_SECONDS must be >= 0.")
        if known_agents and self.routing.default_agent not in known_agents:
            raise ValueError(
                f"Unknown PAIRED_DEFAULT_AGENT: {self.routing.default_agent!r}. "
                f"Use one of {', '.join(known_agents)}.",
            )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {raw!r}") from error
