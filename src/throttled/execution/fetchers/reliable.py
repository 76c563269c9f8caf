"""Blocking-move fetcher over Redis lists with orphan recovery.

Each job is atomically moved from ``queue:{name}`` into the worker's own
``processing:{identity}:{name}`` list and stays there until it is
acknowledged. If a worker dies, its processing lists outlive it; any
other worker can find them (no live ``heartbeat:{identity}`` key), push
the jobs back to their queues and report each one to ``orphan_handler``.

::

    queue:reports  ──LMOVE/BLMOVE──▶  processing:host-12-ab12:reports
         ▲                                   │
         └──── requeue / recover_orphans ────┘      acknowledge → LREM
"""

from __future__ import annotations

import os
import socket
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import redis

from throttled.core.errors import BackendError, RequeueError
from throttled.core.logging import get_logger
from throttled.execution.fetchers.basic import RedisWorkItem, _client_from, _text, queue_key

logger = get_logger(__name__)

PROCESSING_PREFIX = "processing:"
HEARTBEAT_PREFIX = "heartbeat:"

OrphanHandler = Callable[..., Any]


def default_identity() -> str:
    host = socket.gethostname().replace(":", "-")
    return f"{host}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


class ReliableFetcher:
    """``LMOVE``/``BLMOVE``-based fetcher.

    A fetch first tries a non-blocking move from every pollable queue in
    priority order, then blocks on one queue (rotating between calls) for
    at most ``timeout`` seconds.

    Attributes:
        orphan_handler: Called as ``orphan_handler(raw_message)`` for every
            job recovered from a dead worker.
    """

    def __init__(
        self,
        queues: Sequence[str],
        client: Any = None,
        *,
        url: str | None = None,
        identity: str | None = None,
        timeout: float | None = None,
        heartbeat_ttl: int | None = None,
        orphan_handler: OrphanHandler | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not queues:
            raise ValueError("ReliableFetcher needs at least one queue")

        from throttled.core.settings import get_settings

        settings = get_settings()
        self.queues = list(dict.fromkeys(queues))
        if identity is not None and ":" in identity:
            raise ValueError(f"Worker identity must not contain :, got {identity!r}")

        self.identity = identity or default_identity()
        self.timeout = settings.fetch_timeout if timeout is None else timeout
        self.heartbeat_ttl = settings.heartbeat_ttl if heartbeat_ttl is None else heartbeat_ttl
        self.orphan_handler = orphan_handler
        self._client = _client_from(client, url)
        self._sleep = sleep
        self._rotation = 0

    @property
    def client(self) -> Any:
        return self._client

    def processing_key(self, queue: str, identity: str | None = None) -> str:
        return f"{PROCESSING_PREFIX}{identity or self.identity}:{queue}"

    def heartbeat_key(self, identity: str | None = None) -> str:
        return f"{HEARTBEAT_PREFIX}{identity or self.identity}"

    # ------------------------------------------------------------------ #
    # Fetching
    # ------------------------------------------------------------------ #

    def retrieve_work(self, excluded: frozenset[str] = frozenset()) -> RedisWorkItem | None:
        queues = [q for q in self.queues if q not in excluded]
        if not queues:
            self._sleep(self.timeout)
            return None

        try:
            for queue in queues:
                raw = self._client.lmove(
                    queue_key(queue), self.processing_key(queue), src="RIGHT", dest="LEFT"
                )
                if raw is not None:
                    return RedisWorkItem(queue, raw, self)

            queue = queues[self._rotation % len(queues)]
            self._rotation += 1
            raw = self._client.blmove(
                queue_key(queue), self.processing_key(queue), self.timeout, src="RIGHT", dest="LEFT"
            )
        except redis.RedisError as exc:
            raise BackendError("Reliable fetch failed", cause=exc) from exc

        return RedisWorkItem(queue, raw, self) if raw is not None else None

    def acknowledge(self, item: RedisWorkItem) -> None:
        try:
            self._client.lrem(self.processing_key(item.queue_name), 1, item.raw_message)
        except redis.RedisError as exc:
            raise BackendError("Acknowledge failed", cause=exc).with_context(queue=item.queue_name) from exc

    def requeue(self, item: RedisWorkItem, *, front: bool = True) -> None:
        try:
            with self._client.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing_key(item.queue_name), 1, item.raw_message)
                if front:
                    pipe.rpush(queue_key(item.queue_name), item.raw_message)
                else:
                    pipe.lpush(queue_key(item.queue_name), item.raw_message)
                pipe.execute()
        except redis.RedisError as exc:
            raise RequeueError("Requeue failed", cause=exc).with_context(queue=item.queue_name) from exc

    def bulk_requeue(self, items: Iterable[RedisWorkItem]) -> None:
        items = list(items)
        if not items:
            return
        try:
            with self._client.pipeline(transaction=True) as pipe:
                for item in reversed(items):
                    pipe.lrem(self.processing_key(item.queue_name), 1, item.raw_message)
                    pipe.rpush(queue_key(item.queue_name), item.raw_message)
                pipe.execute()
        except redis.RedisError as exc:
            raise RequeueError(f"Bulk requeue of {len(items)} job(s) failed", cause=exc) from exc
        logger.info("jobs_requeued", count=len(items), identity=self.identity)

    # ------------------------------------------------------------------ #
    # Liveness and orphans
    # ------------------------------------------------------------------ #

    def heartbeat(self) -> None:
        """Mark this worker alive for ``heartbeat_ttl`` seconds."""
        try:
            self._client.set(self.heartbeat_key(), int(time.time()), ex=self.heartbeat_ttl)
        except redis.RedisError as exc:
            raise BackendError("Heartbeat failed", cause=exc) from exc

    def recover_orphans(self) -> int:
        """Requeue jobs held by workers without a live heartbeat.

        Returns:
            Number of jobs pushed back to their queues.
        """
        try:
            return self._recover_orphans()
        except redis.RedisError as exc:
            raise BackendError("Orphan recovery scan failed", cause=exc) from exc

    def _recover_orphans(self) -> int:
        recovered = 0
        for key in self._client.scan_iter(match=f"{PROCESSING_PREFIX}*"):
            _, identity, queue = _text(key).split(":", 2)
            if identity == self.identity or self._client.exists(self.heartbeat_key(identity)):
                continue

            while True:
                raw = self._client.lmove(key, queue_key(queue), src="LEFT", dest="RIGHT")
                if raw is None:
                    break
                recovered += 1
                logger.warning("orphan_requeued", queue=queue, identity=identity)
                if self.orphan_handler is not None:
                    try:
                        self.orphan_handler(raw)
                    except Exception:
                        logger.exception("orphan_handler_failed", queue=queue, identity=identity)
        return recovered


__all__ = ["ReliableFetcher", "default_identity", "PROCESSING_PREFIX", "HEARTBEAT_PREFIX"]
