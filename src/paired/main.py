"""CLI entrypoint for paired."""

import signal
import threading
from pathlib import Path

import rich_click as click

from paired import __version__
from paired.hub import server as hub_server
from paired.startup.controllers import (
    CommandResult,
    RouteCommand,
    StartCommand,
    StartupCliController,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = StartupCliController()


@click.group()
@click.version_option(version=__version__, prog_name="paired")
def paired() -> None:
    """PAIRED agent hub CLI."""


@paired.command("start")
@click.argument("source", default="cli")
@click.option(
    "--project-path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project directory for the assessment and introduction steps (default: cwd).",
)
def start(source: str, project_path: Path | None) -> None:
    """Run the full startup sequence (single-flight across callers)."""

    _finish(CONTROLLER.start(StartCommand(source=source, project_path=project_path)))


@paired.command("ensure")
@click.argument("source", default="check")
@click.option(
    "--project-path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project directory for the assessment and introduction steps (default: cwd).",
)
def ensure(source: str, project_path: Path | None) -> None:
    """Start the system only if the bridge is not already healthy."""

    _finish(
        CONTROLLER.start(StartCommand(source=source, ensure=True, project_path=project_path)),
    )


@paired.command("stop")
def stop() -> None:
    """Stop the bridge process."""

    _finish(CONTROLLER.stop())


@paired.command("status")
def status() -> None:
    """Print the last status record and live health as JSON; exit 1 when down."""

    result = CONTROLLER.status()
    _emit_lines(result.lines)
    if not result.success:
        raise SystemExit(1)


@paired.command("route")
@click.argument("text")
@click.option(
    "--project-path",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project context sent with the request (default: cwd).",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    show_default=True,
    help="Print the reply text or the full response envelope.",
)
def route(text: str, project_path: Path | None, output_format: str) -> None:
    """Send free text to the matching agent through the bridge."""

    _finish(
        CONTROLLER.route(
            RouteCommand(
                text=text,
                project_path=project_path,
                output_format=output_format.lower(),
            ),
        ),
    )


@paired.command("agents")
def agents() -> None:
    """List agents and the keywords that route to them."""

    _finish(CONTROLLER.agents())


@paired.command("monitor")
def monitor() -> None:
    """Keep the bridge up: health-check periodically and restart with backoff."""

    stop_event = threading.Event()

    def _request_stop(_signum: int, _frame: object) -> None:
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)
    _finish(CONTROLLER.monitor(stop_event))


@paired.group()
def hub() -> None:
    """Bridge process commands."""


@hub.command("serve")
@click.option("--host", default=None, help="Bind address (default: PAIRED_BRIDGE_HOST).")
@click.option("--port", type=click.IntRange(min=1, max=65535), default=None, help="Bind port.")
def hub_serve(host: str | None, port: int | None) -> None:
    """Run the bridge in the foreground."""

    argv: list[str] = []
    if host is not None:
        argv.extend(["--host", host])
    if port is not None:
        argv.extend(["--port", str(port)])
    if hub_server.main(argv) != 0:
        raise click.ClickException("Bridge failed to start.")


def _finish(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Command failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    paired()
