"""Persisted startup progress readable by any process."""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Named startup steps, in execution order."""

    BRIDGE = "bridge"
    AGENTS = "agents"
    ASSESSMENT = "assessment"
    INTRODUCTION = "introduction"


class PhaseStatus(str, Enum):
    """Per-phase lifecycle states."""

    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    STOPPED = "stopped"
    SKIPPED = "skipped"


STATUS_MESSAGES: dict[tuple[Phase, PhaseStatus], str] = {
    (Phase.BRIDGE, PhaseStatus.STARTING): "🚀 Initializing PAIRED bridge...",
    (Phase.BRIDGE, PhaseStatus.RUNNING): "🌉 Bridge connected",
    (Phase.BRIDGE, PhaseStatus.ERROR): "❌ Bridge failed to start",
    (Phase.BRIDGE, PhaseStatus.STOPPED): "🛑 Bridge stopped",
    (Phase.AGENTS, PhaseStatus.STARTING): "🤖 Loading AI agents...",
    (Phase.AGENTS, PhaseStatus.RUNNING): "✅ All agents online",
    (Phase.AGENTS, PhaseStatus.ERROR): "❌ Agent startup failed",
    (Phase.ASSESSMENT, PhaseStatus.STARTING): "📊 Analyzing project...",
    (Phase.ASSESSMENT, PhaseStatus.COMPLETE): "✅ Project assessment complete",
    (Phase.ASSESSMENT, PhaseStatus.ERROR): "❌ Project assessment failed",
    (Phase.ASSESSMENT, PhaseStatus.SKIPPED): "⏭️ Project assessment skipped",
    (Phase.INTRODUCTION, PhaseStatus.STARTING): "👋 Preparing agent introduction...",
    (Phase.INTRODUCTION, PhaseStatus.COMPLETE): '✅ PAIRED ready - say "Hi Alex" to begin',
    (Phase.INTRODUCTION, PhaseStatus.ERROR): "❌ Agent introduction failed",
    (Phase.INTRODUCTION, PhaseStatus.SKIPPED): "⏭️ Agent introduction skipped",
}


def status_message(phase: Phase, status: PhaseStatus) -> str:
    """Default human-readable message for a phase transition."""

    return STATUS_MESSAGES.get((phase, status), f"{phase.value}: {status.value}")


@dataclass(slots=True)
class StatusRecord:
    """Last known startup state as persisted on disk."""

    timestamp: float
    sequence: int
    run_id: str
    phase: Phase
    status: PhaseStatus
    message: str
    state: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "run_id": self.run_id,
            "phase": self.phase.value,
            "status": self.status.value,
            "message": self.message,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> StatusRecord:
        state = payload.get("state")
        return cls(
            timestamp=float(payload["timestamp"]),
            sequence=int(payload.get("sequence", 0)),
            run_id=str(payload.get("run_id", "")),
            phase=Phase(payload["phase"]),
            status=PhaseStatus(payload["status"]),
            message=str(payload.get("message", "")),
            state=state if isinstance(state, dict) else {},
        )

    def phase_status(self, phase: Phase) -> PhaseStatus | None:
        raw = self.state.get(phase.value)
        try:
            return PhaseStatus(raw) if raw is not None else None
        except ValueError:
            return None

    def is_ready(self) -> bool:
        """Mandatory phases reached ``running`` in the snapshot."""

        return (
            self.phase_status(Phase.BRIDGE) == PhaseStatus.RUNNING
            and self.phase_status(Phase.AGENTS) == PhaseStatus.RUNNING
        )

    def is_newer_than(self, other: StatusRecord | None) -> bool:
        return other is None or self.sequence > other.sequence


class StatusRecorder:
    """Writes one status record per phase transition; never raises on I/O."""

    def __init__(
        self,
        path: Path,
        *,
        run_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = path
        self.run_id = run_id or uuid4().hex
        self._clock = clock
        self._sequence = 0
        self._state: dict[str, Any] = {phase.value: PhaseStatus.PENDING.value for phase in Phase}

    @property
    def state(self) -> dict[str, Any]:
        return dict(self._state)

    def annotate(self, **values: Any) -> None:
        """Attach run metadata (source, start time) to the next snapshots."""

        self._state.update(values)

    def update(
        self,
        phase: Phase,
        status: PhaseStatus,
        message: str | None = None,
    ) -> StatusRecord:
        self._state[phase.value] = status.value
        persisted = self.read()
        self._sequence = max(self._sequence, persisted.sequence if persisted else 0) + 1
        record = StatusRecord(
            timestamp=self._clock(),
            sequence=self._sequence,
            run_id=self.run_id,
            phase=phase,
            status=status,
            message=message or status_message(phase, status),
            state=dict(self._state),
        )

        try:
            self._write(record)
        except OSError as error:
            logger.error("Failed to update status file: %s", error)

        logger.info(
            "Status: %s -> %s%s",
            phase.value,
            status.value,
            f" ({message})" if message else "",
        )
        return record

    def read(self) -> StatusRecord | None:
        try:
            payload = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as error:
            logger.warning("Unreadable status file %s: %s", self.path, error)
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return StatusRecord.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            return None

    def _write(self, record: StatusRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(f".{self.path.name}.{os.getpid()}.{uuid4().hex}.tmp")
        try:
            temp_path.write_text(
                json.dumps(record.to_dict(), ensure_ascii=False, indent=2),
                "utf-8",
            )
            os.replace(temp_path, self.path)
        finally:
            temp_path.unlink(missing_ok=True)
