"""File-based startup lock with stale-lock reclamation."""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from paired.errors import AlreadyLocked

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECONDS = 300.0


@dataclass(slots=True, frozen=True)
class LockDescriptor:
    """Owner record stored in the lock file."""

    timestamp: float
    source: str
    pid: int

    def to_json(self) -> str:
        return json.dumps(
            {"timestamp": self.timestamp, "source": self.source, "pid": self.pid},
            indent=2,
        )

    @classmethod
    def from_json(cls, raw: str) -> LockDescriptor:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("lock descriptor must be a JSON object")
        return cls(
            timestamp=float(payload["timestamp"]),
            source=str(payload.get("source", "unknown")),
            pid=int(payload.get("pid", 0)),
        )

    def age_seconds(self, now: float) -> float:
        return now - self.timestamp


class LockManager:
    """Cross-process mutual exclusion for the startup sequence.

    Every call goes to disk: independent CLI invocations share nothing else.
    Creation uses ``O_CREAT | O_EXCL`` so only one contender can win, and stale
    locks are moved aside with an atomic rename before deletion so two
    reclaimers cannot both delete a fresh lock.
    """

    def __init__(
        self,
        path: Path,
        *,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if stale_after_seconds <= 0:
            raise ValueError("stale_after_seconds must be > 0")
        self.path = path
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock
        self._held: LockDescriptor | None = None

    def read(self) -> LockDescriptor | None:
        """Return the current descriptor without reclaiming anything."""

        try:
            return LockDescriptor.from_json(self.path.read_text("utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def is_locked(self) -> bool:
        try:
            raw = self.path.read_text("utf-8")
        except FileNotFoundError:
            return False
        except OSError as error:
            logger.error("Error checking lock file %s: %s", self.path, error)
            return False

        try:
            descriptor = LockDescriptor.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("Unreadable lock file %s, treating it as stale", self.path)
            return not self._reclaim(expected=None)

        age = descriptor.age_seconds(self._clock())
        if age <= self.stale_after_seconds:
            return True

        logger.warning(
            "Removing stale lock file (source=%s pid=%s age=%.0fs)",
            descriptor.source,
            descriptor.pid,
            age,
        )
        return not self._reclaim(expected=descriptor)

    def acquire(self, source: str) -> LockDescriptor:
        if self.is_locked():
            current = self.read()
            raise AlreadyLocked(
                "Startup already in progress"
                + (f" (source={current.source}, pid={current.pid})" if current else ""),
                source=current.source if current else None,
                pid=current.pid if current else None,
            )

        descriptor = LockDescriptor(timestamp=self._clock(), source=source, pid=os.getpid())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as error:
            current = self.read()
            raise AlreadyLocked(
                "Startup lock was taken by a concurrent caller",
                source=current.source if current else None,
                pid=current.pid if current else None,
            ) from error
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(descriptor.to_json())

        self._held = descriptor
        logger.info("Lock acquired by %s (PID: %s)", source, descriptor.pid)
        return descriptor

    def release(self) -> None:
        held, self._held = self._held, None
        if held is not None:
            current = self.read()
            if current is not None and current != held:
                logger.warning(
                    "Lock file now belongs to source=%s pid=%s, leaving it in place",
                    current.source,
                    current.pid,
                )
                return
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as error:
            logger.error("Error releasing lock: %s", error)
            return
        logger.info("Lock released")

    def _reclaim(self, *, expected: LockDescriptor | None) -> bool:
        """Move a stale lock aside; return True when the slot is free afterwards."""

        aside = self.path.with_name(f"{self.path.name}.{uuid4().hex}.stale")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            return True
        except OSError as error:
            logger.error("Error reclaiming stale lock: %s", error)
            return False

        try:
            moved = LockDescriptor.from_json(aside.read_text("utf-8"))
        except (OSError, ValueError, KeyError, TypeError):
            moved = None

        if expected is not None and moved is not None and moved != expected:
            # A fresh lock replaced the stale one between read and rename: put it back.
            try:
                os.link(aside, self.path)
            except FileExistsError:
                logger.warning(
                    "Lock from %s (pid=%s) was displaced while restoring it; "
                    "the current holder may overlap with it",
                    moved.source,
                    moved.pid,
                )
            aside.unlink(missing_ok=True)
            return False

        aside.unlink(missing_ok=True)
        return True
