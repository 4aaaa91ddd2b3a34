"""Shared test fixtures."""

from __future__ import annotations

import os
import socket
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from paired.config import Settings
from paired.hub.backends import AcknowledgeBackend
from paired.hub.server import Hub, start_server
from paired.routing.agents import build_agent_table


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path: Path) -> Path:
    """Drop inherited PAIRED_* variables and point PAIRED_HOME at a temp dir."""

    for name in list(os.environ):
        if name.startswith("PAIRED_"):
            monkeypatch.delenv(name, raising=False)
    home = tmp_path / "paired-home"
    monkeypatch.setenv("PAIRED_HOME", str(home))
    return home


@pytest.fixture()
def paired_home(_isolated_env: Path) -> Path:
    return _isolated_env


@pytest.fixture()
def settings(paired_home: Path) -> Settings:
    return Settings.from_env()


@pytest.fixture()
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@dataclass
class LiveHub:
    hub: Hub
    port: int


@pytest.fixture()
def live_hub(free_port: int) -> Iterator[LiveHub]:
    """Real hub endpoint served from a background thread."""

    hub = Hub(agents=build_agent_table(), backend=AcknowledgeBackend())
    server = start_server(hub, host="127.0.0.1", port=free_port)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield LiveHub(hub=hub, port=free_port)
    finally:
        server.shutdown()
        thread.join(timeout=5)


@dataclass
class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    now: float = 1000.0
    sleeps: list[float] = field(default_factory=list)

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


class FakeProcess:
    """Stand-in for ``subprocess.Popen`` that never runs anything."""

    _next_pid = 40000

    def __init__(self, *, exit_code: int | None = None) -> None:
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.returncode = exit_code
        self.terminated = False
        self.killed = False

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def wait(self, timeout: float | None = None) -> int | None:
        return self.returncode


class FakeSpawner:
    """Records spawn calls; each call may flip the hub health via ``on_spawn``."""

    def __init__(self, on_spawn=None, *, exit_code: int | None = None) -> None:
        self.processes: list[FakeProcess] = []
        self.on_spawn = on_spawn
        self.exit_code = exit_code

    @property
    def calls(self) -> int:
        return len(self.processes)

    def __call__(self) -> FakeProcess:
        process = FakeProcess(exit_code=self.exit_code)
        self.processes.append(process)
        if self.on_spawn is not None:
            self.on_spawn()
        return process


class Health:
    """Mutable health flag usable as a prober."""

    def __init__(self, healthy: bool = False) -> None:
        self.healthy = healthy
        self.probes = 0

    def __call__(self) -> bool:
        self.probes += 1
        return self.healthy

    def up(self) -> None:
        self.healthy = True
