"""Wire protocol shared by the hub, the prober and the router.

Every exchange is one JSON object per WebSocket text frame. Requests carry a
``type`` discriminator; the hub answers on the same connection with a reply
whose ``type`` names the response kind.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from paired.errors import HubProtocolError


class RequestType(str, Enum):
    """Request discriminators understood by the hub."""

    HEALTH_CHECK = "HEALTH_CHECK"
    STATUS_CHECK = "STATUS_CHECK"
    GET_CONNECTIONS = "GET_CONNECTIONS"
    GET_UPTIME = "GET_UPTIME"
    GET_VERSION = "GET_VERSION"
    PING = "PING"
    REGISTER_INSTANCE = "REGISTER_INSTANCE"
    LIST_AGENTS = "LIST_AGENTS"
    USER_REQUEST = "user_request"


class ResponseType(str, Enum):
    """Reply discriminators produced by the hub."""

    HEALTH = "health_response"
    STATUS = "status_response"
    CONNECTIONS = "connections_response"
    UPTIME = "uptime_response"
    VERSION = "version_response"
    PONG = "pong"
    INSTANCE_REGISTERED = "instance_registered"
    AGENTS_LIST = "agents_list"
    AGENT = "agent_response"
    SPECIALIST = "specialist_response"
    ERROR = "error"


# Older clients sent lower-case health checks.
REQUEST_ALIASES = {"health_check": RequestType.HEALTH_CHECK, "ping": RequestType.PING}


def parse_request_type(raw: object) -> RequestType | None:
    if not isinstance(raw, str):
        return None
    if raw in REQUEST_ALIASES:
        return REQUEST_ALIASES[raw]
    try:
        return RequestType(raw)
    except ValueError:
        return None


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class RequestEnvelope:
    """Routed user text sent to the hub."""

    message: str
    target_agent: str
    project_path: str
    instance_id: str = field(default_factory=lambda: f"paired-{uuid4().hex[:12]}")
    timestamp: int = field(default_factory=now_ms)
    type: str = RequestType.USER_REQUEST.value

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "instance_id": self.instance_id,
            "message": self.message,
            "project_path": self.project_path,
            "target_agent": self.target_agent,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class ResponseEnvelope:
    """Uniform routed reply handed back to the front end."""

    status: str
    target: str
    content: str
    label: str = "🤖"
    name: str = "Agent"
    preamble: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def text(self) -> str:
        """Single display string; a delegating agent's line comes first."""

        if not self.ok:
            return self.content
        line = f"{self.label} **{self.name}**: {self.content}"
        return f"{self.preamble}\n{line}" if self.preamble else line

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "target": self.target,
            "label": self.label,
            "name": self.name,
            "content": self.content,
            "text": self.text,
        }


def health_request() -> dict[str, Any]:
    return {"type": RequestType.HEALTH_CHECK.value, "timestamp": now_ms()}


def simple_request(request_type: RequestType, **payload: Any) -> dict[str, Any]:
    return {"type": request_type.value, "timestamp": now_ms(), **payload}


def encode(message: dict[str, Any]) -> str:
    return json.dumps(message, ensure_ascii=False)


def decode(raw: str | bytes) -> dict[str, Any]:
    """Parse one frame, insisting on a JSON object."""

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as error:
            raise HubProtocolError(f"Frame is not UTF-8: {error}") from error
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise HubProtocolError(f"Malformed JSON frame: {error.msg}") from error
    if not isinstance(payload, dict):
        raise HubProtocolError("Frame is not a JSON object")
    return payload


def error_reply(message: str, **extra: Any) -> dict[str, Any]:
    return {"type": ResponseType.ERROR.value, "error": message, "timestamp": now_ms(), **extra}
