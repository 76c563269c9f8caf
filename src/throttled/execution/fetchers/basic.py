"""Polling fetcher over Redis lists.

Jobs are ``LPUSH``ed onto ``queue:{name}`` and popped with ``BRPOP``, so
the right end of a list is the front of the queue. A popped job lives
only in the worker's memory until it finishes; a crash loses it (use
:class:`~throttled.execution.fetchers.reliable.ReliableFetcher` when that
matters).

Queues are skipped when they are excluded for one call or paused through
:meth:`BasicFetcher.notify`.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import redis

from throttled.core.errors import BackendError, RequeueError
from throttled.core.logging import get_logger
from throttled.core.message import encode_message

logger = get_logger(__name__)

QUEUE_PREFIX = "queue:"


def queue_key(name: str) -> str:
    return f"{QUEUE_PREFIX}{name}"


def _text(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


@dataclass
class RedisWorkItem:
    """Job popped by a Redis-backed fetcher."""

    queue_name: str
    raw_message: bytes | str
    fetcher: Any = field(repr=False)

    def acknowledge(self) -> None:
        self.fetcher.acknowledge(self)

    def requeue(self) -> None:
        self.fetcher.requeue(self, front=False)

    def requeue_to_front(self) -> None:
        self.fetcher.requeue(self, front=True)


def _client_from(client: Any, url: str | None) -> Any:
    if client is not None:
        return client
    if url is None:
        from throttled.core.settings import get_settings

        url = get_settings().redis_url
    return redis.from_url(url)


class BasicFetcher:
    """``BRPOP``-based fetcher.

    Example:
        fetcher = BasicFetcher(["critical", "default"], url="redis://localhost:6379/0")
        work = fetcher.retrieve_work(frozenset({"critical"}))
    """

    def __init__(
        self,
        queues: Sequence[str],
        client: Any = None,
        *,
        url: str | None = None,
        timeout: float | None = None,
        strict: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            queues: Queue names in polling priority order.
            client: Pre-built ``redis.Redis`` client (takes precedence over ``url``).
            url: Connection URL.
            timeout: Max seconds a ``BRPOP`` blocks (default from settings).
            strict: Poll in the given order; ``False`` shuffles per call.
            sleep: Used instead of ``BRPOP`` when every queue is unpollable.
        """
        if not queues:
            raise ValueError("BasicFetcher needs at least one queue")
        if timeout is None:
            from throttled.core.settings import get_settings

            timeout = get_settings().fetch_timeout

        self.queues = list(dict.fromkeys(queues))
        self.timeout = timeout
        self.strict = strict
        self._client = _client_from(client, url)
        self._sleep = sleep
        self._paused: set[str] = set()
        self._paused_lock = threading.Lock()

    @property
    def client(self) -> Any:
        return self._client

    # ------------------------------------------------------------------ #
    # Pausing
    # ------------------------------------------------------------------ #

    def notify(self, action: str, queue: str) -> None:
        """Pause or unpause a queue (``action`` is ``"pause"``/``"unpause"``)."""
        with self._paused_lock:
            if action == "pause":
                self._paused.add(queue)
            elif action == "unpause":
                self._paused.discard(queue)
            else:
                raise ValueError(f"Unknown fetcher action: {action!r}")

    def paused(self) -> frozenset[str]:
        with self._paused_lock:
            return frozenset(self._paused)

    def queues_cmd(self, excluded: frozenset[str] = frozenset()) -> list[str]:
        """Redis keys to ``BRPOP`` from, in priority order."""
        skip = excluded | self.paused()
        names = [q for q in self.queues if q not in skip]
        if not self.strict:
            random.shuffle(names)
        return [queue_key(q) for q in names]

    # ------------------------------------------------------------------ #
    # Fetching
    # ------------------------------------------------------------------ #

    def retrieve_work(self, excluded: frozenset[str] = frozenset()) -> RedisWorkItem | None:
        keys = self.queues_cmd(excluded)
        if not keys:
            # BRPOP with no keys is an error; wait like an empty poll would.
            self._sleep(self.timeout)
            return None

        try:
            result = self._client.brpop(keys, timeout=self.timeout)
        except redis.RedisError as exc:
            raise BackendError("BRPOP failed", cause=exc) from exc

        if result is None:
            return None
        key, raw = result
        return RedisWorkItem(_text(key).removeprefix(QUEUE_PREFIX), raw, self)

    def acknowledge(self, item: RedisWorkItem) -> None:
        return None

    def requeue(self, item: RedisWorkItem, *, front: bool = True) -> None:
        key = queue_key(item.queue_name)
        try:
            if front:
                self._client.rpush(key, item.raw_message)
            else:
                self._client.lpush(key, item.raw_message)
        except redis.RedisError as exc:
            raise RequeueError("Requeue failed", cause=exc).with_context(queue=item.queue_name) from exc

    def bulk_requeue(self, items: Iterable[RedisWorkItem]) -> None:
        items = list(items)
        if not items:
            return
        try:
            with self._client.pipeline() as pipe:
                for item in reversed(items):
                    pipe.rpush(queue_key(item.queue_name), item.raw_message)
                pipe.execute()
        except redis.RedisError as exc:
            raise RequeueError(f"Bulk requeue of {len(items)} job(s) failed", cause=exc) from exc
        logger.info("jobs_requeued", count=len(items))

    # ------------------------------------------------------------------ #
    # Producer helpers
    # ------------------------------------------------------------------ #

    def push(self, queue: str, raw_message: bytes | str) -> None:
        self._client.lpush(queue_key(queue), raw_message)

    def enqueue(self, class_name: str, args: Sequence[Any] = (), *, queue: str = "default", **kwargs: Any) -> str:
        raw = encode_message(class_name, list(args), queue=queue, **kwargs)
        self.push(queue, raw)
        return raw

    def size(self, queue: str) -> int:
        return int(self._client.llen(queue_key(queue)))


__all__ = ["BasicFetcher", "RedisWorkItem", "QUEUE_PREFIX", "queue_key"]
