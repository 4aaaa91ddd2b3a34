"""The hub process: one WebSocket endpoint all agent traffic passes through."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import Server, ServerConnection, serve

from paired import __version__
from paired.config import Settings
from paired.errors import HubProtocolError
from paired.hub.backends import AgentBackend, AgentBackendError, AgentRequest, build_backend
from paired.hub.protocol import (
    RequestType,
    ResponseType,
    decode,
    encode,
    error_reply,
    now_ms,
    parse_request_type,
)
from paired.logs import configure_logging
from paired.routing.agents import AgentDescriptor, AgentTable, build_agent_table

logger = logging.getLogger(__name__)


class Hub:
    """Connection bookkeeping and per-message dispatch.

    Each connection is served on its own thread by the WebSocket server, so
    shared maps are guarded by one lock.
    """

    def __init__(
        self,
        *,
        agents: AgentTable,
        backend: AgentBackend,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.agents = agents
        self.backend = backend
        self._clock = clock
        self.started_at = clock()
        self._lock = threading.Lock()
        self._connections: dict[str, dict[str, Any]] = {}
        self._instances: dict[str, dict[str, Any]] = {}

    @property
    def uptime_seconds(self) -> float:
        return max(0.0, self._clock() - self.started_at)

    def open_connection(self, remote: str = "") -> str:
        connection_id = f"conn-{uuid4().hex[:12]}"
        with self._lock:
            self._connections[connection_id] = {
                "remote": remote,
                "connected_at": self._clock(),
                "messages": 0,
            }
        logger.debug("New connection: %s (%s)", connection_id, remote)
        return connection_id

    def close_connection(self, connection_id: str) -> None:
        with self._lock:
            self._connections.pop(connection_id, None)
        logger.debug("Connection closed: %s", connection_id)

    def handle_frame(self, raw: str | bytes, *, connection_id: str = "") -> dict[str, Any]:
        try:
            message = decode(raw)
        except HubProtocolError as error:
            logger.warning("Rejected frame from %s: %s", connection_id or "?", error)
            return error_reply(str(error))
        return self.dispatch(message, connection_id=connection_id)

    def dispatch(  # noqa: PLR0911
        self,
        message: dict[str, Any],
        *,
        connection_id: str = "",
    ) -> dict[str, Any]:
        with self._lock:
            if connection_id in self._connections:
                self._connections[connection_id]["messages"] += 1

        request_type = parse_request_type(message.get("type"))
        if request_type is None:
            logger.info("Unknown message type: %r", message.get("type"))
            return error_reply(f"Unknown message type: {message.get('type')!r}")

        if request_type == RequestType.HEALTH_CHECK:
            return self._health()
        if request_type == RequestType.STATUS_CHECK:
            return self._status()
        if request_type == RequestType.GET_CONNECTIONS:
            return self._connections_reply()
        if request_type == RequestType.GET_UPTIME:
            return {
                "type": ResponseType.UPTIME.value,
                "uptime_seconds": round(self.uptime_seconds, 3),
                "started_at": self.started_at,
            }
        if request_type == RequestType.GET_VERSION:
            return {"type": ResponseType.VERSION.value, "version": __version__}
        if request_type == RequestType.PING:
            return {"type": ResponseType.PONG.value, "timestamp": now_ms()}
        if request_type == RequestType.REGISTER_INSTANCE:
            return self._register_instance(message)
        if request_type == RequestType.LIST_AGENTS:
            return {
                "type": ResponseType.AGENTS_LIST.value,
                "default_agent": self.agents.default_agent,
                "agents": [agent.to_dict() for agent in self.agents.agents],
            }
        return self._user_request(message)

    def serve_connection(self, connection: ServerConnection) -> None:
        connection_id = self.open_connection(str(connection.remote_address))
        try:
            for raw in connection:
                connection.send(encode(self.handle_frame(raw, connection_id=connection_id)))
        except ConnectionClosed:
            pass
        finally:
            self.close_connection(connection_id)

    def _health(self) -> dict[str, Any]:
        with self._lock:
            connections = len(self._connections)
        return {
            "type": ResponseType.HEALTH.value,
            "status": "healthy",
            "bridge": "running",
            "agents": len(self.agents.agents),
            "connections": connections,
            "timestamp": now_ms(),
        }

    def _status(self) -> dict[str, Any]:
        with self._lock:
            connections = len(self._connections)
            instances = len(self._instances)
        return {
            "type": ResponseType.STATUS.value,
            "status": "healthy",
            "bridge": "running",
            "version": __version__,
            "agents": len(self.agents.agents),
            "team_agents_active": len(self.agents.agents) - 1,
            "default_agent": self.agents.default_agent,
            "connections": connections,
            "instances": instances,
            "uptime_seconds": round(self.uptime_seconds, 3),
            "timestamp": now_ms(),
        }

    def _connections_reply(self) -> dict[str, Any]:
        with self._lock:
            connections = [
                {"id": connection_id, **details}
                for connection_id, details in self._connections.items()
            ]
            instances = [
                {"instance_id": instance_id, **details}
                for instance_id, details in self._instances.items()
            ]
        return {
            "type": ResponseType.CONNECTIONS.value,
            "total_active": len(connections),
            "connections": connections,
            "instances": instances,
        }

    def _register_instance(self, message: dict[str, Any]) -> dict[str, Any]:
        instance_id = str(message.get("instance_id") or f"instance-{uuid4().hex[:12]}")
        project_path = str(message.get("project_path") or "")
        capabilities = message.get("capabilities")
        with self._lock:
            self._instances[instance_id] = {
                "project_path": project_path,
                "capabilities": capabilities if isinstance(capabilities, list) else [],
                "registered_at": self._clock(),
            }
        logger.info("Instance %s registered (%s)", instance_id, project_path or "no project")
        return {
            "type": ResponseType.INSTANCE_REGISTERED.value,
            "instance_id": instance_id,
            "project_path": project_path,
            "status": "registered",
        }

    def _user_request(self, message: dict[str, Any]) -> dict[str, Any]:
        text = message.get("message")
        if not isinstance(text, str) or not text.strip():
            return error_reply("user_request requires a non-empty message")

        target_id = str(message.get("target_agent") or self.agents.default_agent).lower()
        agent = self.agents.get(target_id)
        if agent is None:
            logger.warning("Unknown target agent %r, using %s", target_id, self.agents.default_agent)
            agent = self.agents.default
        instance_id = str(message.get("instance_id") or "anonymous")
        logger.info("User request for %s from %s", agent.id, instance_id)

        try:
            content = self.backend.respond(
                AgentRequest(
                    agent=agent,
                    message=text,
                    project_path=str(message.get("project_path") or ""),
                    instance_id=instance_id,
                ),
            )
        except AgentBackendError as error:
            logger.error("Agent %s failed: %s", agent.id, error)
            return error_reply(str(error), agent=agent.id)

        if agent.id == self.agents.default_agent:
            return {
                "type": ResponseType.AGENT.value,
                "timestamp": now_ms(),
                **_agent_part(agent, content),
            }

        coordinator = self.agents.default
        return {
            "type": ResponseType.SPECIALIST.value,
            "timestamp": now_ms(),
            "primary": _agent_part(coordinator, f"Bringing in {agent.display_name} for this."),
            "specialist": _agent_part(agent, content),
        }


def _agent_part(agent: AgentDescriptor, content: str) -> dict[str, Any]:
    return {"agent": agent.id, "emoji": agent.emoji, "name": agent.display_name, "content": content}


def build_hub(settings: Settings) -> Hub:
    return Hub(
        agents=build_agent_table(settings.routing.default_agent),
        backend=build_backend(
            settings.routing.agent_command,
            timeout_seconds=settings.routing.agent_timeout_seconds,
        ),
    )


def start_server(hub: Hub, *, host: str, port: int) -> Server:
    """Bind the endpoint; the caller runs ``serve_forever``."""

    return serve(hub.serve_connection, host, port)


def main(argv: list[str] | None = None) -> int:
    """Run the hub in the foreground until SIGTERM/SIGINT."""

    settings = Settings.from_env()
    parser = argparse.ArgumentParser(prog="paired-hub")
    parser.add_argument("--host", default=settings.hub.host)
    parser.add_argument("--port", type=int, default=settings.hub.port)
    args = parser.parse_args(argv)

    configure_logging(settings, log_path=settings.hub_log_path)
    hub = build_hub(settings)
    try:
        server = start_server(hub, host=args.host, port=args.port)
    except OSError as error:
        logger.error("Bridge cannot bind %s:%s: %s", args.host, args.port, error)
        return 1

    stop_requested = threading.Event()
    received: list[str] = []

    def _signal_handlers(signum: int, _frame: object) -> None:
        # serve_forever owns this thread; shutdown has to run elsewhere.
        received.append(signal.Signals(signum).name)
        stop_requested.set()

    def _shutdown_when_requested() -> None:
        stop_requested.wait()
        logger.info("Bridge stopping on %s", received[0])
        server.shutdown()

    watcher = threading.Thread(target=_shutdown_when_requested, name="bridge-stop", daemon=True)
    watcher.start()
    signal.signal(signal.SIGTERM, _signal_handlers)
    signal.signal(signal.SIGINT, _signal_handlers)
    logger.info(
        "Bridge listening on ws://%s:%s with %d agents",
        args.host,
        args.port,
        len(hub.agents.agents),
    )
    server.serve_forever()
    logger.info("Bridge stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
