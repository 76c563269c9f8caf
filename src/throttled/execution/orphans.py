"""Orphan recovery — release slots held by jobs whose worker died.

The backend reports an orphaned job (claimed, never finished) with its raw
payload. Recovery finalizes the job's limiter like the finalization
middleware would have, then forwards the event to whatever orphan handler
was configured before, so existing handler chains keep working.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from throttled.core.errors import ThrottleError
from throttled.core.logging import get_logger

if TYPE_CHECKING:
    from throttled.execution.throttler import Throttler

logger = get_logger(__name__)

OrphanHandler = Callable[..., Any]


def build_orphan_handler(throttler: Throttler, downstream: OrphanHandler | None = None) -> OrphanHandler:
    """Return a handler that recovers the job, then calls ``downstream``.

    ``downstream`` receives exactly the arguments the backend passed and is
    called even when recovery fails.
    """

    def handle_orphan(raw_message: Any, *extra: Any) -> None:
        try:
            throttler.recover(raw_message)
        except ThrottleError as exc:
            logger.warning("orphan_recovery_failed", **exc.to_dict())
        finally:
            if downstream is not None:
                downstream(raw_message, *extra)

    handle_orphan.downstream = downstream  # type: ignore[attr-defined]
    return handle_orphan


__all__ = ["build_orphan_handler"]
