"""Static agent table: the single source of routing keywords and labels."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class AgentDescriptor:
    """One routable agent. Immutable; table order breaks alias ties."""

    id: str
    display_name: str
    emoji: str
    role: str
    description: str
    aliases: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.display_name,
            "emoji": self.emoji,
            "role": self.role,
            "description": self.description,
            "aliases": list(self.aliases),
        }


AGENTS: tuple[AgentDescriptor, ...] = (
    AgentDescriptor(
        id="alex",
        display_name="Alex (PM)",
        emoji="👑",
        role="Project Manager",
        description="Strategic project coordination and team leadership",
        aliases=("alex", "pm", "project manager", "coordinator", "supreme commander"),
    ),
    AgentDescriptor(
        id="sherlock",
        display_name="Sherlock (QA)",
        emoji="🕵️",
        role="Quality Detective",
        description="Quality investigation and security validation",
        aliases=("sherlock", "qa", "quality", "detective", "testing"),
    ),
    AgentDescriptor(
        id="leonardo",
        display_name="Leonardo (Architecture)",
        emoji="🏛️",
        role="System Architect",
        description="System design and technical architecture",
        aliases=("leonardo", "architect", "architecture", "design", "system"),
    ),
    AgentDescriptor(
        id="edison",
        display_name="Edison (Dev)",
        emoji="⚡",
        role="Problem Solver",
        description="Persistent problem-solving and implementation expertise",
        aliases=("edison", "dev", "developer", "implementation", "code"),
    ),
    AgentDescriptor(
        id="maya",
        display_name="Maya (UX)",
        emoji="🎨",
        role="Experience Designer",
        description="Human experience design and user interface",
        aliases=("maya", "ux", "ui", "user experience"),
    ),
    AgentDescriptor(
        id="vince",
        display_name="Vince (Scrum Master)",
        emoji="🏈",
        role="Team Coach",
        description="Team coaching and process management",
        aliases=("vince", "scrum", "process", "methodology", "coach"),
    ),
    AgentDescriptor(
        id="marie",
        display_name="Marie (Analyst)",
        emoji="🔬",
        role="Data Scientist",
        description="Data analysis and metrics interpretation",
        aliases=("marie", "analyst", "data", "analysis", "scientist"),
    ),
)

COLLECTIVE_KEYWORDS: tuple[str, ...] = ("team", "agents", "paired team", "my team", "everyone")
GREETING_KEYWORDS: tuple[str, ...] = ("hi", "hello", "hey", "greetings")

DEFAULT_AGENT_ID = "alex"


@dataclass(slots=True, frozen=True)
class AgentTable:
    """Agent descriptors plus the team-wide and greeting keyword sets."""

    agents: tuple[AgentDescriptor, ...] = AGENTS
    default_agent: str = DEFAULT_AGENT_ID
    collective_keywords: tuple[str, ...] = COLLECTIVE_KEYWORDS
    greeting_keywords: tuple[str, ...] = GREETING_KEYWORDS

    def __post_init__(self) -> None:
        ids = [agent.id for agent in self.agents]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate agent ids in table: {ids}")
        if self.default_agent not in ids:
            raise ValueError(f"Default agent {self.default_agent!r} is not in the agent table")

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(agent.id for agent in self.agents)

    def get(self, agent_id: str) -> AgentDescriptor | None:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    @property
    def default(self) -> AgentDescriptor:
        agent = self.get(self.default_agent)
        if agent is None:  # pragma: no cover - guarded by __post_init__
            raise LookupError(self.default_agent)
        return agent


def build_agent_table(default_agent: str = DEFAULT_AGENT_ID) -> AgentTable:
    return AgentTable(default_agent=default_agent.strip().lower())
