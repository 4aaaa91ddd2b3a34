"""Error taxonomy shared by startup, supervision and hub transport."""

from __future__ import annotations


class PairedError(RuntimeError):
    """Base class for all hub lifecycle errors."""


class AlreadyLocked(PairedError):
    """Another startup sequence holds the startup lock."""

    def __init__(self, message: str, *, source: str | None = None, pid: int | None = None) -> None:
        super().__init__(message)
        self.source = source
        self.pid = pid


class StartupError(PairedError):
    """A mandatory startup phase failed."""


class StartupTimeout(StartupError):
    """The hub did not become healthy within the startup bound."""


class ProcessSpawnFailure(StartupError):
    """The hub process could not be launched."""


class HealthProbeFailure(StartupError):
    """The hub stopped answering health checks."""


class StartupWaitTimeout(StartupError):
    """A concurrent startup did not release the lock in time."""


class RecoveryExhausted(PairedError):
    """Automatic restarts were exhausted; manual intervention is required."""


class HubError(PairedError):
    """Request/response exchange with the hub failed."""


class HubConnectionError(HubError):
    """The hub endpoint could not be reached."""


class HubTimeout(HubError):
    """The hub did not reply before the deadline."""


class HubProtocolError(HubError):
    """The hub replied with something that is not a JSON object."""
