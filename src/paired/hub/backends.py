"""Agent worker backends the hub dispatches routed requests to."""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from paired.routing.agents import AgentDescriptor


@dataclass(slots=True)
class AgentRequest:
    """Inputs for one agent turn."""

    agent: AgentDescriptor
    message: str
    project_path: str
    instance_id: str


class AgentBackendError(RuntimeError):
    """Agent worker failed to produce a reply."""


class AgentBackend(Protocol):
    """Protocol implemented by agent workers."""

    def respond(self, request: AgentRequest) -> str:
        """Return the agent's reply text."""


class AcknowledgeBackend:
    """Built-in worker: confirms receipt so routing works without external agents."""

    def respond(self, request: AgentRequest) -> str:
        text = " ".join(request.message.split())
        if len(text) > 120:  # noqa: PLR2004
            text = f"{text[:117]}..."
        return f"{request.agent.display_name} received your request: {text}"


class CommandAgentBackend:
    """Run a command template per request and use its stdout as the reply.

    The template supports ``{agent}``, ``{message}`` and ``{project_path}``.
    """

    def __init__(self, command_template: str, *, timeout_seconds: float = 30.0) -> None:
        stripped = command_template.strip()
        if not stripped:
            raise ValueError("Agent command template is empty.")
        if "{message}" not in stripped:
            raise ValueError("Agent command template must include {message}.")
        self.command_template = stripped
        self.timeout_seconds = timeout_seconds

    def respond(self, request: AgentRequest) -> str:
        argv = self._build_argv(request)
        env = os.environ.copy()
        env["PAIRED_AGENT"] = request.agent.id
        env["PAIRED_INSTANCE_ID"] = request.instance_id
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                env=env,
                cwd=request.project_path if os.path.isdir(request.project_path) else None,
                check=False,
            )
        except FileNotFoundError as error:
            raise AgentBackendError(f"Agent command not found: {argv[0]}") from error
        except subprocess.TimeoutExpired as error:
            raise AgentBackendError(
                f"{request.agent.display_name} timed out after {self.timeout_seconds:.0f}s",
            ) from error
        except OSError as error:
            raise AgentBackendError(f"Agent command failed to start: {error}") from error

        if completed.returncode != 0:
            detail = completed.stderr.strip().splitlines()
            raise AgentBackendError(
                f"{request.agent.display_name} exited with code {completed.returncode}"
                + (f": {detail[-1]}" if detail else ""),
            )
        return completed.stdout.strip()

    def _build_argv(self, request: AgentRequest) -> list[str]:
        try:
            rendered = self.command_template.format(
                agent=shlex.quote(request.agent.id),
                message=shlex.quote(request.message),
                project_path=shlex.quote(request.project_path),
            )
        except (KeyError, IndexError) as error:
            raise AgentBackendError(f"Unsupported command template placeholder: {error}") from error
        argv = shlex.split(rendered)
        if not argv:
            raise AgentBackendError("Agent command template rendered empty command.")
        return argv


def build_backend(command_template: str, *, timeout_seconds: float) -> AgentBackend:
    if command_template.strip():
        return CommandAgentBackend(command_template, timeout_seconds=timeout_seconds)
    return AcknowledgeBackend()
