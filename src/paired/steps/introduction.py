"""Built-in introduction step: present the team and remember that we did."""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path

from paired.routing.agents import AGENTS, AgentDescriptor

MARKER_NAME = "introduced"


def team_lines(agents: tuple[AgentDescriptor, ...] = AGENTS) -> list[str]:
    lines = ["Meet your PAIRED team:"]
    lines.extend(
        f"  {agent.emoji} {agent.display_name} ({agent.role}): {agent.description}"
        for agent in agents
    )
    return lines


def write_marker(home: Path, project_path: str) -> Path:
    home.mkdir(parents=True, exist_ok=True)
    marker = home / MARKER_NAME
    marker.write_text(f"{int(time.time())} {project_path}\n", encoding="utf-8")
    return marker


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Introduce the agent team.")
    parser.add_argument("--home", default=None, help="Base directory for the marker file.")
    args = parser.parse_args(argv)

    home = Path(args.home or os.getenv("PAIRED_HOME") or Path.home() / ".paired").expanduser()
    project_path = os.getenv("PAIRED_PROJECT_PATH") or os.getcwd()
    for line in team_lines():
        print(line)
    write_marker(home, project_path)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
