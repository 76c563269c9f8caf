"""Worker loop — fetch, execute and finalize jobs on a thread pool.

The WorkerLoop is the smallest execution framework that honours the
throttling contract: every job it runs comes from a
:class:`~throttled.execution.fetch.ThrottledFetch`, executes under the
finalization middleware, and is acknowledged afterwards.

Usage::

    throttler = Throttler(registry)
    fetch = throttler.setup(ReliableFetcher(["reports", "default"]))

    worker = WorkerLoop(fetch, {"ReportJob": build_report}, throttler=throttler)
    worker.start()  # blocks until SIGINT/SIGTERM

Fetchers exposing ``heartbeat()`` / ``recover_orphans()`` (the reliable
fetcher) get both called every ``housekeeping_interval`` seconds from the
loop's main thread.
"""

from __future__ import annotations

import os
import platform
import signal
import threading
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from throttled.core.errors import MessageError, ThrottleError
from throttled.core.logging import LogContext, get_logger
from throttled.core.message import JobMessage, decode_message
from throttled.execution.fetch import ThrottledFetch
from throttled.execution.fetchers.protocol import WorkItem
from throttled.execution.throttler import Throttler

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class WorkerInfo:
    """Metadata about a running worker."""

    worker_id: str
    pid: int
    started_at: datetime
    concurrency: int
    status: str = "running"
    hostname: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "pid": self.pid,
            "started_at": self.started_at.isoformat(),
            "concurrency": self.concurrency,
            "status": self.status,
            "hostname": self.hostname,
        }


@dataclass
class WorkerStats:
    """Aggregate statistics for a worker."""

    total_processed: int = 0
    total_completed: int = 0
    total_failed: int = 0
    total_unknown: int = 0
    uptime_seconds: float = 0
    last_fetch_at: datetime | None = None
    active_jobs: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_processed": self.total_processed,
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
            "total_unknown": self.total_unknown,
            "uptime_seconds": round(self.uptime_seconds, 2),
            "last_fetch_at": self.last_fetch_at.isoformat() if self.last_fetch_at else None,
            "active_jobs": self.active_jobs,
        }


class WorkerLoop:
    """Runs ``concurrency`` processor threads over one throttled fetch.

    Each processor loops:

        1. ``fetch.retrieve_work()`` — None means nothing admissible yet.
        2. Decode the payload and resolve the job callable by effective class.
        3. Run ``job(*args)`` under :class:`ThrottleMiddleware` (finalize on
           every exit path).
        4. ``work.acknowledge()``.

    Job exceptions are logged and counted; they never stop a processor.
    """

    def __init__(
        self,
        fetch: ThrottledFetch,
        jobs: Mapping[str, Callable[..., Any]],
        *,
        throttler: Throttler | None = None,
        concurrency: int = 4,
        worker_id: str | None = None,
        housekeeping_interval: float = 15.0,
    ):
        """
        Args:
            fetch: Throttled fetch to pull work from.
            jobs: Job class name → callable receiving the job's args.
            throttler: Defaults to ``fetch.throttler``.
            concurrency: Number of processor threads.
            worker_id: Custom worker identifier. Auto-generated if ``None``.
            housekeeping_interval: Seconds between heartbeat/orphan sweeps.
                Must be shorter than the fetcher's ``heartbeat_ttl``.

        Raises:
            ValueError: If ``concurrency < 1`` or the heartbeat would lapse
                between sweeps.
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        heartbeat_ttl = getattr(fetch.fetcher, "heartbeat_ttl", None)
        if heartbeat_ttl is not None and housekeeping_interval >= heartbeat_ttl:
            raise ValueError(
                f"housekeeping_interval ({housekeeping_interval}s) must be shorter than "
                f"the fetcher heartbeat_ttl ({heartbeat_ttl}s)"
            )

        self._fetch = fetch
        self._jobs = dict(jobs)
        self._throttler = throttler or fetch.throttler
        self._middleware = self._throttler.middleware()
        self._concurrency = concurrency
        self._housekeeping_interval = housekeeping_interval
        self._worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._shutdown = threading.Event()
        self._started_at = _utcnow()
        self._stats = WorkerStats()
        self._stats_lock = threading.Lock()
        self._active = 0
        self._threads: list[threading.Thread] = []

        self.info = WorkerInfo(
            worker_id=self._worker_id,
            pid=os.getpid(),
            started_at=self._started_at,
            concurrency=concurrency,
            hostname=platform.node(),
        )

    @property
    def worker_id(self) -> str:
        return self._worker_id

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Run the processors (blocking) until :meth:`stop` or SIGINT/SIGTERM."""
        logger.info(
            "worker_starting",
            worker_id=self._worker_id,
            concurrency=self._concurrency,
            queues_excluded=sorted(self._fetch.excluded_queues()),
        )

        # Processing lists must never exist without a live heartbeat.
        self._heartbeat()

        try:
            signal.signal(signal.SIGINT, self._handle_signal)
            signal.signal(signal.SIGTERM, self._handle_signal)
        except (ValueError, OSError):
            pass  # not in main thread, skip signal registration

        self._threads = [
            threading.Thread(target=self._run_processor, name=f"{self._worker_id}-{n}", daemon=True)
            for n in range(self._concurrency)
        ]
        for thread in self._threads:
            thread.start()

        try:
            while not self._shutdown.is_set():
                self._housekeeping()
                self._shutdown.wait(self._housekeeping_interval)
        finally:
            self._cleanup()

    def start_background(self) -> threading.Thread:
        """Start the worker in a daemon thread. Returns the thread."""
        t = threading.Thread(target=self.start, name=f"{self._worker_id}-loop", daemon=True)
        t.start()
        return t

    def stop(self) -> None:
        """Request graceful shutdown; running jobs finish first."""
        logger.info("worker_stopping", worker_id=self._worker_id)
        self._shutdown.set()
        self.info.status = "stopping"

    def get_stats(self) -> WorkerStats:
        """Return current worker statistics."""
        with self._stats_lock:
            self._stats.active_jobs = self._active
        self._stats.uptime_seconds = (_utcnow() - self._started_at).total_seconds()
        return self._stats

    # ------------------------------------------------------------------ #
    # Processing
    # ------------------------------------------------------------------ #

    def _run_processor(self) -> None:
        while not self._shutdown.is_set():
            try:
                self.process_one()
            except Exception:
                logger.exception("processor_error", worker_id=self._worker_id)
                self._shutdown.wait(1.0)

    def process_one(self) -> bool:
        """Fetch and run at most one job. Returns True if a job was handled."""
        work = self._fetch.retrieve_work()
        self._stats.last_fetch_at = _utcnow()
        if work is None:
            return False

        with self._stats_lock:
            self._active += 1
            self._stats.total_processed += 1
        try:
            self._execute(work)
        finally:
            with self._stats_lock:
                self._active -= 1
        work.acknowledge()
        return True

    def _execute(self, work: WorkItem) -> None:
        try:
            message = decode_message(work.raw_message)
        except MessageError as exc:
            logger.error("job_undecodable", queue=work.queue_name, **exc.to_dict())
            self._count("total_failed")
            return

        job = self._jobs.get(message.effective_class) or self._jobs.get(message.class_name)
        if job is None:
            self._unknown(message)
            return

        with LogContext(job_class=message.effective_class, job_id=message.job_id, queue=message.queue_name):
            try:
                self._middleware(message, lambda: job(*message.args))
            except Exception as exc:
                logger.error("job_failed", error=f"{type(exc).__name__}: {exc}")
                self._count("total_failed")
            else:
                logger.debug("job_completed")
                self._count("total_completed")

    def _unknown(self, message: JobMessage) -> None:
        logger.warning("job_class_unknown", job_class=message.effective_class, job_id=message.job_id)
        self._count("total_unknown")
        try:
            self._throttler.finalize(message)
        except ThrottleError as exc:
            logger.error("finalize_failed", **exc.to_dict())

    def _count(self, field: str) -> None:
        with self._stats_lock:
            setattr(self._stats, field, getattr(self._stats, field) + 1)

    # ------------------------------------------------------------------ #
    # Housekeeping, signals & cleanup
    # ------------------------------------------------------------------ #

    def _heartbeat(self) -> None:
        fetcher = self._fetch.fetcher
        if hasattr(fetcher, "heartbeat"):
            fetcher.heartbeat()

    def _housekeeping(self) -> None:
        fetcher = self._fetch.fetcher
        try:
            self._heartbeat()
            if hasattr(fetcher, "recover_orphans"):
                recovered = fetcher.recover_orphans()
                if recovered:
                    logger.info("orphans_recovered", worker_id=self._worker_id, count=recovered)
        except ThrottleError as exc:
            logger.warning("housekeeping_failed", **exc.to_dict())

    def _handle_signal(self, signum, frame):
        logger.info("worker_signal_received", worker_id=self._worker_id, signal=signum)
        self.stop()

    def _cleanup(self) -> None:
        for thread in self._threads:
            thread.join()
        self.info.status = "stopped"
        logger.info(
            "worker_stopped",
            worker_id=self._worker_id,
            processed=self._stats.total_processed,
            failed=self._stats.total_failed,
        )


__all__ = ["WorkerInfo", "WorkerLoop", "WorkerStats"]
