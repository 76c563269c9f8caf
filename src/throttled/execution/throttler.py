"""Throttler — the facade wiring registry, fetch, finalization and recovery.

One ``Throttler`` per worker process. It owns the
:class:`~throttled.execution.registry.StrategyRegistry` and answers the
three questions the queue integration asks:

::

    is_throttled(raw)   admission    (fetch boundary, fail-open)
    finalize(message)   release      (after execution, every exit path)
    recover(raw)        release      (orphaned job of a dead worker)

Example::

    registry = StrategyRegistry(RedisCounterStore(url=settings.redis_url))
    registry.register("ReportJob", concurrency={"limit": 2})

    throttler = Throttler(registry)
    fetch = throttler.setup(ReliableFetcher(["reports", "default"]))
    WorkerLoop(fetch, jobs, throttler=throttler).start()
"""

from __future__ import annotations

from typing import Any

from throttled.core.errors import MessageError, ThrottleError, is_fail_open
from throttled.core.logging import get_logger
from throttled.core.message import JobMessage, decode_message
from throttled.core.settings import ThrottleSettings, get_settings
from throttled.execution.fetch import ThrottledFetch
from throttled.execution.fetchers.protocol import Fetcher
from throttled.execution.limiters import Limiter
from throttled.execution.middleware import ThrottleMiddleware
from throttled.execution.orphans import OrphanHandler, build_orphan_handler
from throttled.execution.registry import StrategyRegistry, get_default_registry

logger = get_logger(__name__)


def _as_message(message: JobMessage | str | bytes | dict[str, Any]) -> JobMessage:
    return message if isinstance(message, JobMessage) else decode_message(message)


class Throttler:
    """Admission, finalization and recovery against one registry."""

    def __init__(
        self,
        registry: StrategyRegistry | None = None,
        *,
        settings: ThrottleSettings | None = None,
    ):
        self.registry = registry if registry is not None else get_default_registry()
        self.settings = settings or get_settings()

    def limiter_for(self, message: JobMessage | str | bytes | dict[str, Any]) -> Limiter:
        """Limiter of the message's effective class.

        Raises:
            MessageError: If a raw message cannot be decoded.
        """
        return self.registry.lookup(_as_message(message).effective_class)

    def check(self, message: JobMessage | str | bytes | dict[str, Any]) -> bool:
        """Strict admission check: True if the job must be deferred.

        A False answer may have reserved a concurrency slot.

        Raises:
            MessageError: Undecodable message.
            AdmissionCheckError: The limiter could not decide.
        """
        message = _as_message(message)
        limiter = self.registry.lookup(message.effective_class)
        return limiter.throttled(message.job_id, *message.args)

    def is_throttled(self, message: JobMessage | str | bytes | dict[str, Any]) -> bool:
        """Fail-open admission check used at the fetch boundary."""
        try:
            message = _as_message(message)
            throttled = self.check(message)
        except ThrottleError as exc:
            if not is_fail_open(exc):
                raise
            logger.warning("admission_check_failed", **exc.to_dict())
            return False

        if throttled:
            logger.info(
                "job_throttled",
                job_class=message.effective_class,
                job_id=message.job_id,
                queue=message.queue_name,
            )
        return throttled

    def finalize(self, message: JobMessage | str | bytes | dict[str, Any]) -> None:
        """Release the limiter state held by ``message``'s job."""
        message = _as_message(message)
        self.registry.lookup(message.effective_class).finalize(message.job_id, *message.args)

    def recover(self, raw_message: JobMessage | str | bytes | dict[str, Any]) -> bool:
        """Release an orphaned job's slots.

        Returns:
            True when the limiter was finalized, False when the message
            could not be decoded.

        Raises:
            StoreError: If the counter store is unreachable.
        """
        try:
            message = _as_message(raw_message)
        except MessageError as exc:
            logger.warning("recover_skipped", **exc.to_dict())
            return False

        self.finalize(message)
        logger.info("job_recovered", job_class=message.effective_class, job_id=message.job_id)
        return True

    # ------------------------------------------------------------------ #
    # Wiring
    # ------------------------------------------------------------------ #

    def fetcher(self, base: Fetcher, cooldown: float | None = None) -> ThrottledFetch:
        return ThrottledFetch(base, self, cooldown=cooldown)

    def middleware(self) -> ThrottleMiddleware:
        return ThrottleMiddleware(self)

    def orphan_handler(self, downstream: OrphanHandler | None = None) -> OrphanHandler:
        return build_orphan_handler(self, downstream)

    def setup(self, base: Fetcher, cooldown: float | None = None) -> ThrottledFetch:
        """Wrap ``base`` for throttled fetching.

        When ``base`` exposes an ``orphan_handler`` attribute, it is replaced
        by one that recovers the job first and then calls the previous one.
        """
        if hasattr(base, "orphan_handler"):
            base.orphan_handler = self.orphan_handler(base.orphan_handler)
        fetch = self.fetcher(base, cooldown)
        logger.info(
            "throttler_configured",
            fetcher=type(base).__name__,
            cooldown=fetch.cooldown,
            limiters=len(self.registry),
        )
        return fetch


__all__ = ["Throttler"]
