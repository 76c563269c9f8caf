"""Fetcher protocol — the minimum queue surface the throttling layer consumes.

A fetcher pops one unit of work at a time while skipping the queues it is
told to exclude. The unit of work knows how to go back to its queue.

Any object that satisfies these protocols can be wrapped by
:class:`~throttled.execution.fetch.ThrottledFetch` (duck typing).
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class WorkItem(Protocol):
    """One dequeued job."""

    queue_name: str
    raw_message: Any

    def acknowledge(self) -> None:
        """Mark the job as finished; it will not be handed out again."""
        ...

    def requeue(self) -> None:
        """Return the job to the back of its queue."""
        ...

    def requeue_to_front(self) -> None:
        """Return the job to the front of its queue (popped next)."""
        ...


@runtime_checkable
class Fetcher(Protocol):
    """Queue backend that honours an exclusion list."""

    def retrieve_work(self, excluded: frozenset[str] = frozenset()) -> WorkItem | None:
        """Pop one job from a queue not in ``excluded``.

        May block for a bounded time; returns ``None`` when nothing arrived.
        """
        ...

    def bulk_requeue(self, items: Iterable[WorkItem]) -> None:
        """Push unfinished jobs back to the front of their queues."""
        ...


@runtime_checkable
class PausableFetcher(Protocol):
    """Queue backend that models exclusion as pause/unpause state."""

    def notify(self, action: str, queue: str) -> None:
        """``action`` is ``"pause"`` or ``"unpause"``."""
        ...

    def retrieve_work(self) -> WorkItem | None:
        ...

    def bulk_requeue(self, items: Iterable[WorkItem]) -> None:
        ...


__all__ = ["Fetcher", "PausableFetcher", "WorkItem"]
