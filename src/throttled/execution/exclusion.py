"""Exclusion set — queues hidden from polling until a deadline.

After a queue yields a throttled job the fetch adapter stops polling it
for a cooldown window. There is no background sweeper: expired entries are
pruned lazily whenever the set is read.

Entries are per process. Each worker process decides on its own what to
exclude from its own polling.

Example::

    excluded = ExclusionSet(cooldown=2.0)
    excluded.add("reports")
    "reports" in excluded          # True for the next 2 seconds
    fetcher.retrieve_work(excluded.snapshot())
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class ExclusionSet:
    """Thread-safe set of queue names, each with an expiry instant.

    Adding a queue that is already excluded keeps the later of the two
    expiries, so concurrent ``add`` calls commute.

    Attributes:
        cooldown: Default exclusion window in seconds.
    """

    def __init__(self, cooldown: float = 2.0, clock: Callable[[], float] = time.monotonic):
        if cooldown < 0:
            raise ValueError("cooldown must be non-negative")
        self.cooldown = cooldown
        self._clock = clock
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, queue: str, cooldown: float | None = None) -> None:
        """Exclude ``queue`` for ``cooldown`` seconds (default: ``self.cooldown``)."""
        window = self.cooldown if cooldown is None else cooldown
        with self._lock:
            expires_at = self._clock() + window
            if expires_at > self._entries.get(queue, float("-inf")):
                self._entries[queue] = expires_at

    def snapshot(self) -> frozenset[str]:
        """Return the currently excluded queues, pruning expired entries."""
        with self._lock:
            now = self._clock()
            expired = [q for q, expires_at in self._entries.items() if now >= expires_at]
            for queue in expired:
                del self._entries[queue]
            return frozenset(self._entries)

    def expires_at(self, queue: str) -> float | None:
        """Clock reading at which ``queue`` becomes pollable, if excluded."""
        with self._lock:
            expires_at = self._entries.get(queue)
            if expires_at is None or self._clock() >= expires_at:
                return None
            return expires_at

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def is_empty(self) -> bool:
        return not self.snapshot()

    def __contains__(self, queue: object) -> bool:
        return queue in self.snapshot()

    def __len__(self) -> int:
        return len(self.snapshot())

    def __iter__(self):
        return iter(self.snapshot())

    def __repr__(self) -> str:
        return f"ExclusionSet(cooldown={self.cooldown}, queues={sorted(self.snapshot())})"


__all__ = ["ExclusionSet"]
