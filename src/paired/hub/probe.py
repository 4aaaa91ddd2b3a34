"""Typed health probe against the hub endpoint."""

from __future__ import annotations

import logging

from paired.errors import HubError
from paired.hub.client import HubClient
from paired.hub.protocol import ResponseType, health_request

logger = logging.getLogger(__name__)


def probe(port: int, timeout_ms: int, *, host: str = "127.0.0.1") -> bool:
    """Return True only for a ``health_response`` received within ``timeout_ms``.

    No retries here; callers own their retry policy.
    """

    if timeout_ms <= 0:
        return False
    try:
        reply = HubClient(host=host, port=port).request(
            health_request(),
            timeout_seconds=timeout_ms / 1000,
        )
    except HubError as error:
        logger.debug("Health probe on port %s failed: %s", port, error)
        return False
    return reply.get("type") == ResponseType.HEALTH.value


class HealthProber:
    """Bound probe for one hub endpoint, injectable into supervisor and orchestrator."""

    def __init__(self, *, host: str = "127.0.0.1", port: int = 7890, timeout_ms: int = 5000) -> None:
        self.host = host
        self.port = port
        self.timeout_ms = timeout_ms

    def __call__(self) -> bool:
        return probe(self.port, self.timeout_ms, host=self.host)
