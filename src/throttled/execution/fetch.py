"""Throttled fetch — the admission point at the queue boundary.

Wraps any :class:`~throttled.execution.fetchers.protocol.Fetcher`. For each
dequeued job it asks the :class:`~throttled.execution.throttler.Throttler`
whether the job may run now:

::

    retrieve_work()
      1. excluded = exclusions.snapshot()
      2. work = fetcher.retrieve_work(excluded)   ─ None → return None
      3. throttler.is_throttled(work.raw_message)
      4a. throttled → work.requeue_to_front()
                      exclusions.add(work.queue_name, cooldown)
                      return None
      4b. admitted  → return work

A queue that just yielded a throttled job is hidden from this process's
polling for ``cooldown`` seconds so the worker does not spin popping and
requeueing the same job. Other queues keep being polled.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from throttled.core.errors import RequeueError
from throttled.core.logging import get_logger
from throttled.execution.exclusion import ExclusionSet
from throttled.execution.fetchers.protocol import Fetcher, WorkItem

if TYPE_CHECKING:
    from throttled.execution.throttler import Throttler

logger = get_logger(__name__)


class ThrottledFetch:
    """Fetcher decorator that defers throttled jobs.

    Example:
        fetch = ThrottledFetch(BasicFetcher(["default"]), throttler, cooldown=1.0)
        work = fetch.retrieve_work()   # None when nothing admissible arrived
    """

    def __init__(
        self,
        fetcher: Fetcher,
        throttler: Throttler,
        *,
        cooldown: float | None = None,
        exclusions: ExclusionSet | None = None,
    ):
        """
        Args:
            fetcher: Backend that does the actual popping.
            throttler: Decides admission and owns the registry.
            cooldown: Seconds a queue stays unpolled after a throttled job
                (default: ``throttler.settings.queue_cooldown``).
            exclusions: Pre-built exclusion set (tests, sharing between
                adapters of one process).
        """
        if fetcher is None:
            raise ValueError("ThrottledFetch requires a fetcher to wrap")

        self.fetcher = fetcher
        self.throttler = throttler
        if cooldown is None:
            cooldown = exclusions.cooldown if exclusions is not None else throttler.settings.queue_cooldown
        self._cooldown = cooldown
        self._exclusions = exclusions if exclusions is not None else ExclusionSet(cooldown)

    @property
    def cooldown(self) -> float:
        return self._cooldown

    @property
    def exclusions(self) -> ExclusionSet:
        return self._exclusions

    def excluded_queues(self) -> frozenset[str]:
        return self._exclusions.snapshot()

    def retrieve_work(self) -> WorkItem | None:
        """Pop the next admissible job, or ``None``."""
        work = self.fetcher.retrieve_work(self._exclusions.snapshot())
        if work is None:
            return None

        try:
            throttled = self.throttler.is_throttled(work.raw_message)
        except BaseException:
            # Never drop a popped job: put it back before propagating.
            self._requeue(work)
            raise

        if not throttled:
            return work

        self._requeue(work)
        self._exclusions.add(work.queue_name, self._cooldown)
        logger.debug("queue_excluded", queue=work.queue_name, cooldown=self._cooldown)
        return None

    def _requeue(self, work: WorkItem) -> None:
        try:
            work.requeue_to_front()
        except RequeueError:
            raise
        except Exception as exc:
            raise RequeueError(f"Could not requeue job to {work.queue_name!r}", cause=exc).with_context(
                queue=work.queue_name
            ) from exc

    def bulk_requeue(self, items: Iterable[WorkItem]) -> None:
        self.fetcher.bulk_requeue(items)


__all__ = ["ThrottledFetch"]
