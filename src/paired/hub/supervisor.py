"""Launch the hub as a detached process and keep it healthy."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from paired.config import SupervisorSettings
from paired.errors import ProcessSpawnFailure, RecoveryExhausted, StartupTimeout

logger = logging.getLogger(__name__)

_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


class SupervisorState(str, Enum):
    """Supervisor lifecycle."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    RECOVERING = "recovering"
    TERMINALLY_FAILED = "terminally_failed"


@dataclass(slots=True)
class ProcessHandle:
    """The hub process currently tracked by the supervisor."""

    pid: int
    start_time: float
    retry_count: int = 0
    process: subprocess.Popen[bytes] | None = None


class HubSpawner(Protocol):
    """Starts one hub process and returns it."""

    def __call__(self) -> subprocess.Popen[bytes]:
        """Spawn the hub."""


class SubprocessHubSpawner:
    """Runs ``python -m paired.hub`` in its own session, output appended to a log."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        log_path: Path,
        cwd: Path,
        python: str = sys.executable,
    ) -> None:
        self.host = host
        self.port = port
        self.log_path = log_path
        self.cwd = cwd
        self.python = python

    def __call__(self) -> subprocess.Popen[bytes]:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.cwd.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("ab") as log_handle:
            return subprocess.Popen(  # noqa: S603
                [
                    self.python,
                    "-m",
                    "paired.hub",
                    "--host",
                    self.host,
                    "--port",
                    str(self.port),
                ],
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )


class ProcessSupervisor:
    """Single owner of the hub process handle.

    ``start`` brings the hub up once; ``check_once`` is one monitor tick with
    bounded restart-with-backoff recovery; after ``max_retries`` failed
    restarts the supervisor stops restarting until the hub answers again.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        prober: Callable[[], bool],
        spawner: HubSpawner,
        settings: SupervisorSettings,
        pid_path: Path | None = None,
        on_recovery_exhausted: Callable[[RecoveryExhausted], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.prober = prober
        self.spawner = spawner
        self.settings = settings
        self.pid_path = pid_path
        self.on_recovery_exhausted = on_recovery_exhausted
        self._sleep = sleep
        self._clock = clock
        self._handle: ProcessHandle | None = None
        self._state = SupervisorState.STOPPED
        self._retry_count = 0
        self.spawn_count = 0
        self.restart_count = 0

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    @property
    def retry_count(self) -> int:
        return self._retry_count

    def start(self) -> ProcessHandle | None:
        """Bring the hub up; no-op when it already answers health checks."""

        if self.prober():
            logger.info("Bridge already running")
            self._mark_healthy()
            return self._handle

        self._state = SupervisorState.STARTING
        try:
            handle = self._spawn()
        except ProcessSpawnFailure:
            self._state = SupervisorState.STOPPED
            raise
        if not self._wait_until_healthy(handle):
            self._state = SupervisorState.STOPPED
            raise StartupTimeout(
                "Bridge failed to become healthy within "
                f"{self.settings.startup_timeout_seconds:.0f}s (pid={handle.pid})",
            )
        logger.info("Bridge is healthy (pid=%s)", handle.pid)
        self._mark_healthy()
        return handle

    def check_once(self) -> bool:
        """Run one monitor tick; return whether the hub is healthy afterwards."""

        if self.prober():
            if self._state in (SupervisorState.TERMINALLY_FAILED, SupervisorState.STOPPED):
                logger.info("Bridge reachable again, supervision resumed")
            self._mark_healthy()
            return True

        if self._state == SupervisorState.TERMINALLY_FAILED:
            logger.debug("Bridge still down; waiting for manual intervention")
            return False

        logger.warning("Bridge health check failed")
        return self._recover()

    def run_monitor(self, stop_event: threading.Event, *, start_first: bool = True) -> None:
        """Tick every ``monitor_interval_seconds`` until ``stop_event`` is set."""

        logger.info("Starting bridge health monitoring")
        if start_first:
            try:
                self.start()
            except (ProcessSpawnFailure, StartupTimeout) as error:
                logger.error("Failed to start bridge initially: %s", error)
        while not stop_event.wait(self.settings.monitor_interval_seconds):
            self.check_once()
        logger.info("Monitoring stopped")

    def stop(self) -> bool:
        """Terminate the tracked hub; return whether a process was signalled."""

        handle, self._handle = self._handle, None
        pid = handle.pid if handle is not None else self._read_pid_file()
        self._state = SupervisorState.STOPPED
        try:
            if pid is None:
                return False
            if handle is None and not _runs_hub(pid):
                logger.warning(
                    "Ignoring stale pid file %s: pid=%s is not a bridge process",
                    self.pid_path,
                    pid,
                )
                return False
            process = handle.process if handle is not None else None
            logger.info("Stopping bridge (pid=%s)", pid)
            return self._terminate(pid, process)
        finally:
            self._clear_pid_file()

    def _recover(self) -> bool:
        self._state = SupervisorState.RECOVERING
        max_retries = self.settings.max_retries
        while self._retry_count < max_retries:
            logger.info("Attempting recovery (%d/%d)...", self._retry_count + 1, max_retries)
            if self._restart():
                logger.info("Bridge recovered successfully")
                self._mark_healthy()
                return True
            self._retry_count += 1
            self._sleep(self.settings.retry_backoff_seconds)

        self._state = SupervisorState.TERMINALLY_FAILED
        error = RecoveryExhausted(
            f"Bridge recovery exhausted after {max_retries} restart attempts; "
            "manual intervention required",
        )
        logger.error("%s", error)
        if self.on_recovery_exhausted is not None:
            self.on_recovery_exhausted(error)
        return False

    def _restart(self) -> bool:
        self.restart_count += 1
        self.stop()
        self._state = SupervisorState.RECOVERING
        self._sleep(self.settings.retry_backoff_seconds)
        try:
            handle = self._spawn()
        except ProcessSpawnFailure as error:
            logger.error("Restart failed: %s", error)
            return False
        return self._wait_until_healthy(handle)

    def _spawn(self) -> ProcessHandle:
        try:
            process = self.spawner()
        except OSError as error:
            raise ProcessSpawnFailure(f"Could not launch bridge: {error}") from error
        self.spawn_count += 1
        handle = ProcessHandle(
            pid=process.pid,
            start_time=time.time(),
            retry_count=self._retry_count,
            process=process,
        )
        self._handle = handle
        self._write_pid_file(handle.pid)
        logger.info("Bridge process spawned (pid=%s)", handle.pid)
        return handle

    def _wait_until_healthy(self, handle: ProcessHandle) -> bool:
        deadline = self._clock() + self.settings.startup_timeout_seconds
        while True:
            if self.prober():
                return True
            if handle.process is not None and handle.process.poll() is not None:
                logger.error(
                    "Bridge process exited early with code %s",
                    handle.process.returncode,
                )
                return False
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(self.settings.poll_interval_seconds, remaining))

    def _mark_healthy(self) -> None:
        self._state = SupervisorState.RUNNING
        self._retry_count = 0
        if self._handle is not None:
            self._handle.retry_count = 0

    def _terminate(self, pid: int, process: subprocess.Popen[bytes] | None) -> bool:
        grace = self.settings.stop_grace_seconds
        if process is not None:
            if process.poll() is not None:
                return False
            process.terminate()
            try:
                process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                logger.warning("Bridge ignored SIGTERM, killing pid=%s", pid)
                process.kill()
                process.wait(timeout=grace)
            return True

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            return False
        except PermissionError as error:
            logger.error("Cannot signal bridge pid=%s: %s", pid, error)
            return False
        deadline = time.monotonic() + grace
        while time.monotonic() < deadline:
            if not _pid_alive(pid):
                return True
            time.sleep(0.05)
        if _pid_alive(pid):
            logger.warning("Bridge ignored SIGTERM, killing pid=%s", pid)
            try:
                os.kill(pid, _SIGKILL)
            except ProcessLookupError:
                pass
        return True

    def _write_pid_file(self, pid: int) -> None:
        if self.pid_path is None:
            return
        try:
            self.pid_path.parent.mkdir(parents=True, exist_ok=True)
            self.pid_path.write_text(str(pid), "utf-8")
        except OSError as error:
            logger.warning("Failed to write pid file %s: %s", self.pid_path, error)

    def _read_pid_file(self) -> int | None:
        if self.pid_path is None:
            return None
        try:
            return int(self.pid_path.read_text("utf-8").strip())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as error:
            logger.warning("Ignoring unreadable pid file %s: %s", self.pid_path, error)
            return None

    def _clear_pid_file(self) -> None:
        if self.pid_path is not None:
            self.pid_path.unlink(missing_ok=True)


def _runs_hub(pid: int) -> bool:
    """False only when the process is known to run something other than the hub."""

    try:
        cmdline = Path(f"/proc/{pid}/cmdline").read_bytes()
    except OSError:
        return True
    return b"paired.hub" in cmdline


def _pid_alive(pid: int) -> bool:
    if hasattr(os, "WNOHANG"):
        # An exited child stays signalable until it is reaped.
        try:
            reaped, _status = os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            pass
        else:
            if reaped == pid:
                return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
