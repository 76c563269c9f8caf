"""Limiters — per-job-class admission decisions.

ARCHITECTURE
────────────
::

    Limiter (ABC)
      ├── NeverThrottled       ─ unregistered classes (fail-open)
      ├── ConcurrencyLimiter   ─ cap on in-flight jobs, released on finalize
      ├── ThresholdLimiter     ─ cap on admissions per fixed window
      └── CompositeLimiter     ─ all sub-limiters must admit

    throttled(job_id, *args) → bool   reserve/count, True means "defer"
    finalize(job_id, *args)  → None   release whatever throttled() reserved

Limiters hold no state of their own; every check is one atomic operation
against the shared :class:`~throttled.core.store.CounterStore`.

Failures while evaluating a dynamic option or talking to the store are
raised as :class:`~throttled.core.errors.AdmissionCheckError`, which the
fetch boundary treats as "admit".

Example::

    store = InMemoryCounterStore()
    limiter = ConcurrencyLimiter("ReportJob", store, limit=2)
    limiter.throttled("jid-1")   # False, slot reserved
    limiter.throttled("jid-2")   # False
    limiter.throttled("jid-3")   # True
    limiter.finalize("jid-1")
    limiter.throttled("jid-3")   # False
"""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import Any

from throttled.core.errors import AdmissionCheckError, StoreError, ThrottleError
from throttled.core.logging import get_logger
from throttled.core.store import CounterStore

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "throttled"
DEFAULT_CONCURRENCY_TTL = 900


def _evaluate(
    name: str,
    option: str,
    value: Any,
    args: tuple[Any, ...],
    convert: Callable[[Any], Any] | None = None,
) -> Any:
    """Return a literal option as-is, or call a dynamic one with ``args``."""
    if not callable(value):
        return value
    try:
        result = value(*args)
        return convert(result) if convert is not None else result
    except Exception as exc:
        raise AdmissionCheckError(
            f"Dynamic '{option}' of {name} raised {type(exc).__name__}", cause=exc
        ).with_context(job_class=name) from exc


class Limiter(ABC):
    """Common interface for all limiter variants."""

    name: str

    @abstractmethod
    def throttled(self, job_id: str, *args: Any) -> bool:
        """Return True if the job must be deferred.

        A False answer may reserve state (a concurrency slot) that
        :meth:`finalize` releases.
        """
        ...

    def finalize(self, job_id: str, *args: Any) -> None:
        """Release state held for ``job_id``. Idempotent."""
        return None


class NeverThrottled(Limiter):
    """Limiter for job classes with no registered constraints."""

    def __init__(self, name: str = "<unregistered>"):
        self.name = name

    def throttled(self, job_id: str, *args: Any) -> bool:
        return False

    def __repr__(self) -> str:
        return f"NeverThrottled({self.name!r})"


class ConcurrencyLimiter(Limiter):
    """Caps the number of simultaneously running jobs of a class.

    Slots are keyed by job id, so re-checking a job that already holds a
    slot does not consume a second one. ``key_suffix`` partitions the pool
    (e.g. one pool per tenant argument).
    """

    def __init__(
        self,
        name: str,
        store: CounterStore,
        limit: int | Callable[..., int],
        *,
        key_suffix: Callable[..., Any] | None = None,
        ttl: int = DEFAULT_CONCURRENCY_TTL,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        self.name = name
        self._store = store
        self._limit = limit
        self._key_suffix = key_suffix
        self._ttl = ttl
        self._key_prefix = key_prefix

    def key(self, *args: Any) -> str:
        base = f"{self._key_prefix}:concurrency:{self.name}"
        if self._key_suffix is None:
            return base
        return f"{base}:{_evaluate(self.name, 'key_suffix', self._key_suffix, args)}"

    def limit(self, *args: Any) -> int:
        return _evaluate(self.name, "limit", self._limit, args, int)

    def throttled(self, job_id: str, *args: Any) -> bool:
        limit = self.limit(*args)
        if limit <= 0:
            return True

        key = self.key(*args)
        try:
            reserved = self._store.reserve(key, job_id, limit, self._ttl)
        except StoreError as exc:
            raise AdmissionCheckError(
                f"Concurrency check failed for {self.name}", cause=exc
            ).with_context(job_class=self.name, job_id=job_id) from exc
        return not reserved

    def finalize(self, job_id: str, *args: Any) -> None:
        self._store.release(self.key(*args), job_id)

    def count(self, *args: Any) -> int:
        """Slots currently held in the pool selected by ``args``."""
        return self._store.occupancy(self.key(*args))

    def __repr__(self) -> str:
        return f"ConcurrencyLimiter({self.name!r}, limit={self._limit!r})"


class ThresholdLimiter(Limiter):
    """Caps admissions of a class per fixed time window.

    The window id is ``floor(now / period)``; its counter expires one period
    after the first admission. Rejected attempts are rolled back by the
    store, so a burst of throttled checks never pushes the window above
    its limit.
    """

    def __init__(
        self,
        name: str,
        store: CounterStore,
        limit: int | Callable[..., int],
        period: float | timedelta | Callable[..., float | timedelta],
        *,
        key_suffix: Callable[..., Any] | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self._store = store
        self._limit = limit
        self._period = period
        self._key_suffix = key_suffix
        self._key_prefix = key_prefix
        self._clock = clock

    def limit(self, *args: Any) -> int:
        return _evaluate(self.name, "limit", self._limit, args, int)

    def period(self, *args: Any) -> float:
        value = _evaluate(self.name, "period", self._period, args)
        if isinstance(value, timedelta):
            value = value.total_seconds()
        value = float(value)
        if value <= 0 or math.isnan(value):
            raise AdmissionCheckError(
                f"Threshold period of {self.name} must be positive, got {value}"
            ).with_context(job_class=self.name)
        return value

    def key(self, period: float, *args: Any) -> str:
        window = int(self._clock() // period)
        base = f"{self._key_prefix}:threshold:{self.name}"
        if self._key_suffix is not None:
            base = f"{base}:{_evaluate(self.name, 'key_suffix', self._key_suffix, args)}"
        return f"{base}:{int(period * 1000)}:{window}"

    def throttled(self, job_id: str, *args: Any) -> bool:
        limit = self.limit(*args)
        if limit <= 0:
            return True

        period = self.period(*args)
        key = self.key(period, *args)
        try:
            admitted = self._store.increment_window(key, limit, period)
        except StoreError as exc:
            raise AdmissionCheckError(
                f"Threshold check failed for {self.name}", cause=exc
            ).with_context(job_class=self.name, job_id=job_id) from exc
        return not admitted

    def count(self, *args: Any) -> int:
        """Admissions counted in the current window for ``args``."""
        period = self.period(*args)
        return self._store.window_count(self.key(period, *args))

    def __repr__(self) -> str:
        return f"ThresholdLimiter({self.name!r}, limit={self._limit!r}, period={self._period!r})"


class CompositeLimiter(Limiter):
    """Admits a job only if every sub-limiter admits it.

    Checks short-circuit on the first throttle; sub-limiters that already
    admitted (and may hold a slot) are finalized before returning.
    :meth:`finalize` always releases every sub-limiter.
    """

    def __init__(self, name: str, limiters: Sequence[Limiter] = ()):
        self.name = name
        self.limiters: tuple[Limiter, ...] = tuple(limiters)

    def throttled(self, job_id: str, *args: Any) -> bool:
        admitted: list[Limiter] = []
        for limiter in self.limiters:
            if limiter.throttled(job_id, *args):
                self._rollback(admitted, job_id, args)
                return True
            admitted.append(limiter)
        return False

    def _rollback(self, admitted: list[Limiter], job_id: str, args: tuple[Any, ...]) -> None:
        # The job is deferred either way; a failed release only leaks a slot until its TTL.
        for limiter in admitted:
            try:
                limiter.finalize(job_id, *args)
            except ThrottleError as exc:
                logger.warning(
                    "limiter_finalize_failed",
                    job_class=self.name,
                    job_id=job_id,
                    limiter=type(limiter).__name__,
                    error=str(exc),
                )

    def finalize(self, job_id: str, *args: Any) -> None:
        first_error: ThrottleError | None = None
        for limiter in self.limiters:
            try:
                limiter.finalize(job_id, *args)
            except ThrottleError as exc:
                logger.warning(
                    "limiter_finalize_failed",
                    job_class=self.name,
                    job_id=job_id,
                    limiter=type(limiter).__name__,
                    error=str(exc),
                )
                first_error = first_error or exc
        if first_error is not None:
            raise first_error

    def __iter__(self):
        return iter(self.limiters)

    def __len__(self) -> int:
        return len(self.limiters)

    def __repr__(self) -> str:
        return f"CompositeLimiter({self.name!r}, {list(self.limiters)!r})"


__all__ = [
    "DEFAULT_CONCURRENCY_TTL",
    "DEFAULT_KEY_PREFIX",
    "CompositeLimiter",
    "ConcurrencyLimiter",
    "Limiter",
    "NeverThrottled",
    "ThresholdLimiter",
]
