"""
Wasm Runner CLI - Command Line Interface
"""

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from . import __version__

console = Console()

PROFILE_CHOICES = click.Choice(["module", "component"])


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Log sandbox stage transitions")
@click.pass_context
def main(ctx, verbose: bool):
    """Wasm Runner - sandboxed WebAssembly execution service

    Serve the HTTP gateway, or run a payload locally.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _setup_logging(ctx, level: int) -> None:
    level = logging.DEBUG if ctx.obj.get("verbose") else level
    logging.basicConfig(level=level)
    logging.getLogger("wasm-runner").setLevel(level)


@main.command()
@click.option("--host", default=None, help="Listen address (default: $HOST or 0.0.0.0)")
@click.option("--port", "-p", default=None, type=int, help="Listen port (default: $PORT or 3000)")
@click.option("--profile", default=None, type=PROFILE_CHOICES, help="Payload profile")
@click.option("--workers", "-w", default=None, type=int, help="Execution worker threads")
@click.pass_context
def serve(ctx, host: str, port: int, profile: str, workers: int):
    """Run the HTTP gateway.

    Example: wasm-runner serve --port 3000
    """
    _setup_logging(ctx, logging.INFO)
    import dataclasses

    import uvicorn

    from .config import load_settings
    from .sandbox import ProfileKind
    from .server import create_app

    try:
        settings = load_settings()
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)

    overrides = {}
    if host is not None:
        overrides["host"] = host
    if port is not None:
        overrides["port"] = port
    if profile is not None:
        overrides["profile"] = ProfileKind(profile)
    if workers is not None:
        if workers < 1:
            console.print("[red]Error:[/red] --workers must be at least 1")
            sys.exit(1)
        overrides["workers"] = workers
    settings = dataclasses.replace(settings, **overrides)

    console.print(f"[green]Wasm Runner[/green] listening on http://{settings.host}:{settings.port}")
    console.print(f"[dim]Profile: {settings.profile.value} | Workers: {settings.workers}[/dim]")

    # uvicorn exits non-zero if it cannot bind
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level="info",
    )


@main.command()
@click.argument("payload", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--profile", default="module", type=PROFILE_CHOICES, help="Payload profile")
@click.option("--fuel", default=None, type=int, help="Step budget (default: unlimited)")
@click.option("--timeout", "-t", default=30.0, type=float, help="Wall-clock budget in seconds")
@click.option("--json", "output_json", is_flag=True, help="Output the outcome as JSON")
@click.pass_context
def run(ctx, payload: Path, profile: str, fuel: int, timeout: float, output_json: bool):
    """Run a WebAssembly payload locally and print its report.

    Exits 0 when the guest completed or trapped, 1 when it never ran.

    Example: wasm-runner run hello.wasm
    """
    _setup_logging(ctx, logging.WARNING)
    from .sandbox import Failed, Trapped, get_profile, render_report, sandbox_execute
    from .sandbox.executor import outcome_to_dict

    try:
        outcome = sandbox_execute(
            payload.read_bytes(),
            profile=get_profile(profile),
            fuel=fuel,
            timeout=timeout,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if output_json:
        click.echo(json.dumps(outcome_to_dict(outcome), indent=2))
    else:
        if isinstance(outcome, Failed):
            style, title = "red", f"Failed ({outcome.stage.value})"
        elif isinstance(outcome, Trapped):
            style, title = "yellow", "Trapped"
        else:
            style, title = "green", "Completed"
        console.print(Panel(
            Text(render_report(outcome)),
            title=f"{payload.name}: {title}",
            subtitle=f"{outcome.duration_ms}ms",
            border_style=style,
        ))

    sys.exit(1 if isinstance(outcome, Failed) else 0)


if __name__ == "__main__":
    main()
