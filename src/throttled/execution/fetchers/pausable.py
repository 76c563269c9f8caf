"""Adapter for fetchers that pause queues instead of taking an exclusion list."""

from __future__ import annotations

from collections.abc import Iterable

from throttled.execution.fetchers.protocol import PausableFetcher, WorkItem


class PausableFetcherAdapter:
    """Presents a :class:`PausableFetcher` as a :class:`Fetcher`.

    Excluded queues are paused for the duration of one ``retrieve_work``
    call and unpaused afterwards, even when the call raises.
    """

    def __init__(self, fetcher: PausableFetcher):
        self.wrapped = fetcher

    def retrieve_work(self, excluded: frozenset[str] = frozenset()) -> WorkItem | None:
        paused: list[str] = []
        try:
            for queue in sorted(excluded):
                self.wrapped.notify("pause", queue)
                paused.append(queue)
            return self.wrapped.retrieve_work()
        finally:
            for queue in paused:
                self.wrapped.notify("unpause", queue)

    def bulk_requeue(self, items: Iterable[WorkItem]) -> None:
        self.wrapped.bulk_requeue(items)


__all__ = ["PausableFetcherAdapter"]
