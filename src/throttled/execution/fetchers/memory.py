"""In-memory fetcher for tests and development.

Queues are deques guarded by one condition variable; the left end of a
deque is the front of the queue. Nothing survives the process, so this
fetcher must not be used in production.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from throttled.core.message import encode_message


@dataclass
class MemoryWorkItem:
    """Job popped from a :class:`MemoryFetcher`."""

    queue_name: str
    raw_message: str
    fetcher: MemoryFetcher = field(repr=False)
    acknowledged: bool = False

    def acknowledge(self) -> None:
        self.acknowledged = True

    def requeue(self) -> None:
        self.fetcher.push(self.queue_name, self.raw_message)

    def requeue_to_front(self) -> None:
        self.fetcher.push(self.queue_name, self.raw_message, front=True)


class MemoryFetcher:
    """Strict-priority fetcher over in-process queues.

    Example:
        >>> fetcher = MemoryFetcher(["critical", "default"], timeout=0.1)
        >>> fetcher.enqueue("ReportJob", [42])
        >>> fetcher.retrieve_work().queue_name
        'default'
    """

    def __init__(self, queues: Sequence[str] = ("default",), *, timeout: float = 0.1):
        """
        Args:
            queues: Queue names in polling priority order.
            timeout: Max seconds ``retrieve_work`` waits for a job.
        """
        self.queues = list(queues)
        self.timeout = timeout
        self._queues: dict[str, deque[str]] = {name: deque() for name in self.queues}
        self._cond = threading.Condition()

    def push(self, queue: str, raw_message: str, *, front: bool = False) -> None:
        with self._cond:
            items = self._queues.setdefault(queue, deque())
            if queue not in self.queues:
                self.queues.append(queue)
            if front:
                items.appendleft(raw_message)
            else:
                items.append(raw_message)
            self._cond.notify_all()

    def enqueue(self, class_name: str, args: Sequence[Any] = (), *, queue: str = "default", **kwargs: Any) -> str:
        """Encode and push a job; returns the raw payload."""
        raw = encode_message(class_name, list(args), queue=queue, **kwargs)
        self.push(queue, raw)
        return raw

    def _pop(self, excluded: frozenset[str]) -> MemoryWorkItem | None:
        for name in self.queues:
            if name in excluded:
                continue
            items = self._queues[name]
            if items:
                return MemoryWorkItem(name, items.popleft(), self)
        return None

    def retrieve_work(self, excluded: frozenset[str] = frozenset()) -> MemoryWorkItem | None:
        with self._cond:
            work = self._pop(excluded)
            if work is None:
                self._cond.wait_for(lambda: self._pop_ready(excluded), timeout=self.timeout)
                work = self._pop(excluded)
            return work

    def _pop_ready(self, excluded: frozenset[str]) -> bool:
        return any(self._queues[name] for name in self.queues if name not in excluded)

    def bulk_requeue(self, items: Iterable[MemoryWorkItem]) -> None:
        for item in reversed(list(items)):
            item.requeue_to_front()

    def size(self, queue: str) -> int:
        with self._cond:
            return len(self._queues.get(queue, ()))

    def messages(self, queue: str) -> list[str]:
        """Snapshot of a queue, front first."""
        with self._cond:
            return list(self._queues.get(queue, ()))


__all__ = ["MemoryFetcher", "MemoryWorkItem"]
