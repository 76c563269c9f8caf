"""
Root Typer application for the ``throttled`` CLI.

Sub-commands are registered from sibling modules; the job-level commands
(``check``, ``recover``) live here.
"""

from __future__ import annotations

import typer
from typer import Typer

from throttled.cli.utils import console, err_console, load_throttler
from throttled.core.errors import ThrottleError
from throttled.core.message import decode_message

app = Typer(
    name="throttled",
    help="throttled — concurrency and threshold throttling for queue workers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

THROTTLER_OPTION = typer.Option(
    ...,
    "--throttler",
    "-t",
    envvar="THROTTLED_THROTTLER",
    help="Throttler or StrategyRegistry as 'module:attribute'.",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("throttled")
        except PackageNotFoundError:
            from throttled import __version__ as v
        typer.echo(f"throttled {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """throttled CLI — inspect limits, release slots, run a worker."""


# ── Job commands ─────────────────────────────────────────────────────────


@app.command("check")
def check(
    message: str = typer.Argument(..., help="Raw JSON job payload."),
    throttler_path: str = THROTTLER_OPTION,
    release: bool = typer.Option(
        True, "--release/--keep", help="Release a reserved concurrency slot afterwards."
    ),
) -> None:
    """Ask whether a job would be throttled right now.

    The check is real: an admitted job counts against its threshold window
    and, unless released, holds a concurrency slot.

    Example::

        throttled check '{"class": "ReportJob", "jid": "abc", "args": [1]}' -t app.jobs:registry
    """
    throttler = load_throttler(throttler_path)
    try:
        job = decode_message(message)
        throttled = throttler.check(job)
        if not throttled and release:
            throttler.finalize(job)
    except ThrottleError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1)

    err_console.print("[dim]note: this check counts against the threshold window[/dim]")
    if throttled:
        console.print(f"[yellow]throttled[/yellow]  {job.effective_class} ({job.job_id})")
        raise typer.Exit(code=2)
    console.print(f"[green]admit[/green]  {job.effective_class} ({job.job_id})")


@app.command("recover")
def recover(
    message: str = typer.Argument(..., help="Raw JSON job payload."),
    throttler_path: str = THROTTLER_OPTION,
) -> None:
    """Release the limiter state held by a job (e.g. of a crashed worker)."""
    throttler = load_throttler(throttler_path)
    try:
        recovered = throttler.recover(message)
    except ThrottleError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=1)

    if not recovered:
        err_console.print("[yellow]Message could not be decoded; nothing released[/yellow]")
        raise typer.Exit(code=1)
    console.print("[green]Released[/green]")


# ── Sub-command registration ─────────────────────────────────────────────

from throttled.cli.config import app as config_app  # noqa: E402
from throttled.cli.worker import app as worker_app  # noqa: E402

app.add_typer(config_app, name="config", help="Configuration inspection.")
app.add_typer(worker_app, name="worker", help="Run a throttled worker.")


if __name__ == "__main__":
    app()
