"""Finalization — release limiter state after every job execution.

A job admitted through a concurrency limiter holds a slot until it is
finalized. The slot must be released exactly once on every exit path of
the job: success, failure or exception.

Example::

    middleware = ThrottleMiddleware(throttler)
    middleware(work.raw_message, lambda: handler(*args))

    # or, around arbitrary code
    with finalizing(throttler, message):
        handler(*message.args)
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from throttled.core.errors import MessageError, ThrottleError
from throttled.core.logging import get_logger
from throttled.core.message import JobMessage, decode_message

if TYPE_CHECKING:
    from throttled.execution.throttler import Throttler

logger = get_logger(__name__)

T = TypeVar("T")


@contextmanager
def finalizing(throttler: Throttler, message: JobMessage) -> Iterator[JobMessage]:
    """Finalize ``message``'s limiter when the block exits.

    If the block raises, a finalize failure is logged and the block's
    exception propagates; otherwise a finalize failure propagates.
    """
    try:
        yield message
    except BaseException:
        try:
            throttler.finalize(message)
        except ThrottleError as exc:
            logger.error(
                "finalize_failed",
                job_class=message.effective_class,
                job_id=message.job_id,
                error=str(exc),
            )
        raise
    else:
        throttler.finalize(message)


class ThrottleMiddleware:
    """Runs a job and finalizes its effective class's limiter afterwards."""

    def __init__(self, throttler: Throttler):
        self.throttler = throttler

    def __call__(self, message: JobMessage | str | bytes | dict[str, Any], run: Callable[[], T]) -> T:
        try:
            message = message if isinstance(message, JobMessage) else decode_message(message)
        except MessageError:
            # Undecodable jobs were admitted without reserving anything.
            return run()

        with finalizing(self.throttler, message):
            return run()


__all__ = ["ThrottleMiddleware", "finalizing"]
