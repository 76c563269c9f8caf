"""
CLI: ``throttled worker`` — run a throttled worker loop.
"""

from __future__ import annotations

import typer

from throttled.cli.utils import console, load_object, load_throttler

app = typer.Typer(no_args_is_help=True)

BACKENDS = ("basic", "reliable")


@app.command("start")
def start(
    jobs: str = typer.Option(..., "--jobs", "-j", help="Mapping of class name → callable, as 'module:attribute'"),
    throttler_path: str = typer.Option(
        ..., "--throttler", "-t", envvar="THROTTLED_THROTTLER", help="Throttler or registry, as 'module:attribute'"
    ),
    queues: list[str] = typer.Option(["default"], "--queue", "-q", help="Queue to poll (repeatable, in priority order)"),
    backend: str = typer.Option("reliable", "--backend", "-b", help="Fetcher: basic or reliable"),
    workers: int = typer.Option(4, "--workers", "-w", help="Concurrent processor threads"),
    cooldown: float | None = typer.Option(None, "--cooldown", help="Seconds a throttled queue is skipped"),  # noqa: UP007
    worker_id: str | None = typer.Option(None, "--id", help="Custom worker identifier"),  # noqa: UP007
) -> None:
    """Start a worker that fetches through the throttler.

    Example::

        throttled worker start -j app.jobs:JOBS -t app.jobs:registry -q reports -q default
    """
    from throttled.core.logging import configure_logging
    from throttled.core.settings import get_settings
    from throttled.execution.fetchers import BasicFetcher, ReliableFetcher
    from throttled.execution.worker import WorkerLoop

    if backend not in BACKENDS:
        raise typer.BadParameter(f"backend must be one of {', '.join(BACKENDS)}")

    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs, service="throttled-worker")

    throttler = load_throttler(throttler_path)
    job_map = load_object(jobs)
    fetcher_cls = BasicFetcher if backend == "basic" else ReliableFetcher
    fetch = throttler.setup(fetcher_cls(queues, url=settings.redis_url), cooldown)

    console.print(
        f"[bold green]Starting throttled worker[/bold green] "
        f"(backend={backend}, threads={workers}, queues={','.join(queues)})"
    )

    try:
        WorkerLoop(fetch, job_map, throttler=throttler, concurrency=workers, worker_id=worker_id).start()
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
    except Exception as exc:
        console.print(f"[red]Worker error: {exc}[/red]")
        raise typer.Exit(code=1)
