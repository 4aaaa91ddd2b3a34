"""Route free text to an agent through the hub and normalise the reply."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from paired.errors import HubConnectionError, HubError, HubTimeout
from paired.hub.protocol import RequestEnvelope, ResponseEnvelope, ResponseType
from paired.routing.agents import AgentDescriptor, AgentTable

logger = logging.getLogger(__name__)

DEFAULT_ROUTE_TIMEOUT_SECONDS = 3.0


class MatchCategory(str, Enum):
    """Which keyword set produced a routing decision."""

    AGENT = "agent"
    COLLECTIVE = "collective"
    GREETING = "greeting"


@dataclass(slots=True, frozen=True)
class RouteDecision:
    """Classifier output: target agent and the keyword that matched."""

    target: str
    category: MatchCategory
    keyword: str


class HubTransport(Protocol):
    """Request/response channel to the hub."""

    def request(
        self,
        message: dict[str, Any],
        *,
        timeout_seconds: float,
        expect_type: str | None = None,
    ) -> dict[str, Any]:
        """Send one message and return the reply."""


def classify(text: str, agents: AgentTable) -> RouteDecision | None:
    """Map free text to an agent id, or None when it is not agent traffic.

    Agent aliases match as substrings in table order, so the first agent
    listing a keyword wins. Team-wide words, then greetings, fall back to the
    default agent. Greetings must match a whole word: "hi" would otherwise
    hit "this" or "which".
    """

    if not text or not text.strip():
        return None
    lowered = text.lower()

    for agent in agents.agents:
        for alias in agent.aliases:
            if alias in lowered:
                return RouteDecision(target=agent.id, category=MatchCategory.AGENT, keyword=alias)

    for keyword in agents.collective_keywords:
        if keyword in lowered:
            return RouteDecision(
                target=agents.default_agent,
                category=MatchCategory.COLLECTIVE,
                keyword=keyword,
            )

    for keyword in agents.greeting_keywords:
        if re.search(rf"\b{re.escape(keyword)}\b", lowered):
            return RouteDecision(
                target=agents.default_agent,
                category=MatchCategory.GREETING,
                keyword=keyword,
            )
    return None


def normalize_reply(reply: dict[str, Any], agent: AgentDescriptor) -> ResponseEnvelope:
    """Fold any hub reply shape into one envelope."""

    if reply.get("error"):
        return failure_envelope(agent, str(reply["error"]))

    if reply.get("type") == ResponseType.SPECIALIST.value:
        primary = reply.get("primary") if isinstance(reply.get("primary"), dict) else None
        specialist = reply.get("specialist") if isinstance(reply.get("specialist"), dict) else None
        main = specialist or primary
        if main is None:
            return failure_envelope(agent, "delegation reply had no agent parts")
        envelope = _envelope_from_part(main, agent)
        if primary is not None and specialist is not None:
            envelope.preamble = _envelope_from_part(primary, agent).text
        return envelope

    if "content" in reply:
        return _envelope_from_part(reply, agent)

    if isinstance(reply.get("response"), str):
        return ResponseEnvelope(
            status="ok",
            target=agent.id,
            label=agent.emoji,
            name=agent.display_name,
            content=reply["response"],
        )

    return failure_envelope(agent, f"{agent.display_name} responded but format was unclear")


def failure_envelope(agent: AgentDescriptor, cause: str) -> ResponseEnvelope:
    return ResponseEnvelope(
        status="error",
        target=agent.id,
        label="❌",
        name=agent.display_name,
        content=f"❌ Could not reach {agent.display_name}: {cause}",
    )


def _envelope_from_part(part: dict[str, Any], agent: AgentDescriptor) -> ResponseEnvelope:
    content = part.get("content")
    return ResponseEnvelope(
        status="ok",
        target=agent.id,
        label=str(part.get("emoji") or "🤖"),
        name=str(part.get("name") or agent.display_name),
        content=str(content) if content is not None else "No response",
    )


class MessageRouter:
    """Classify, forward over a fresh hub connection, normalise; never raises."""

    def __init__(
        self,
        *,
        agents: AgentTable,
        transport: HubTransport,
        timeout_seconds: float = DEFAULT_ROUTE_TIMEOUT_SECONDS,
        instance_id: str | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.agents = agents
        self.transport = transport
        self.timeout_seconds = timeout_seconds
        self.instance_id = instance_id

    def classify(self, text: str) -> RouteDecision | None:
        return classify(text, self.agents)

    def route(self, text: str, project_path: str | None = None) -> ResponseEnvelope | None:
        decision = self.classify(text)
        if decision is None:
            return None
        agent = self.agents.get(decision.target) or self.agents.default
        envelope = RequestEnvelope(
            message=text,
            target_agent=agent.id,
            project_path=project_path or os.getcwd(),
        )
        if self.instance_id:
            envelope.instance_id = self.instance_id

        logger.info(
            "Routing to %s (%s match on %r)",
            agent.id,
            decision.category.value,
            decision.keyword,
        )
        try:
            reply = self.transport.request(
                envelope.to_wire(),
                timeout_seconds=self.timeout_seconds,
            )
        except HubTimeout:
            logger.warning("Routing to %s timed out", agent.id)
            return failure_envelope(
                agent,
                f"request timed out after {self.timeout_seconds:.0f}s",
            )
        except HubConnectionError as error:
            logger.warning("Routing to %s failed: %s", agent.id, error)
            return failure_envelope(agent, "bridge may be down")
        except HubError as error:
            logger.warning("Routing to %s got a bad reply: %s", agent.id, error)
            return failure_envelope(agent, f"malformed reply ({error})")
        return normalize_reply(reply, agent)
