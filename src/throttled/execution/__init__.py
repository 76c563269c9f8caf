"""Throttled Execution — admission control at the work-fetch boundary.

WHY
───
Job frameworks pop work as fast as workers free up. Some job classes must
not run more than N at a time, or more than M times per period, across
every worker. Rejecting such jobs wastes them; running them breaks the
downstream system. ``throttled.execution`` defers them instead: a
throttled job goes back to the front of its queue, and the queue is
skipped by this process for a short cooldown.

ARCHITECTURE
────────────
::

    Fetcher (backend)                  ─ pops raw jobs, skips excluded queues
      │
      ▼
    ThrottledFetch                     ─ admission + requeue + ExclusionSet
      │   └── Throttler.is_throttled   ─ fail-open
      │         └── StrategyRegistry   ─ class name → CompositeLimiter
      │               ├── ConcurrencyLimiter  (store.reserve / release)
      │               └── ThresholdLimiter    (store.increment_window)
      ▼
    WorkerLoop / your framework
      └── ThrottleMiddleware           ─ finalize on every exit path

    Orphan recovery                    ─ finalize jobs of dead workers

MODULE MAP
──────────
  1. options.py     ─ ConcurrencyOptions / ThresholdOptions (pydantic)
  2. limiters.py    ─ Limiter variants
  3. registry.py    ─ StrategyRegistry + ``@throttle`` decorator
  4. exclusion.py   ─ ExclusionSet (per-process cooldown list)
  5. fetchers/      ─ Fetcher protocol + memory / basic / reliable backends
  6. fetch.py       ─ ThrottledFetch
  7. middleware.py  ─ ThrottleMiddleware / finalizing()
  8. orphans.py     ─ build_orphan_handler
  9. throttler.py   ─ Throttler facade
 10. worker.py      ─ WorkerLoop
"""

from throttled.execution.exclusion import ExclusionSet
from throttled.execution.fetch import ThrottledFetch
from throttled.execution.fetchers import (
    BasicFetcher,
    Fetcher,
    MemoryFetcher,
    PausableFetcher,
    PausableFetcherAdapter,
    ReliableFetcher,
    WorkItem,
)
from throttled.execution.limiters import (
    CompositeLimiter,
    ConcurrencyLimiter,
    Limiter,
    NeverThrottled,
    ThresholdLimiter,
)
from throttled.execution.middleware import ThrottleMiddleware, finalizing
from throttled.execution.options import (
    ConcurrencyOptions,
    ThresholdOptions,
    ThrottleOptions,
    parse_options,
)
from throttled.execution.orphans import build_orphan_handler
from throttled.execution.registry import (
    StrategyRegistry,
    get_default_registry,
    reset_default_registry,
    set_default_registry,
    throttle,
)
from throttled.execution.throttler import Throttler
from throttled.execution.worker import WorkerInfo, WorkerLoop, WorkerStats

__all__ = [
    # Options
    "ConcurrencyOptions",
    "ThresholdOptions",
    "ThrottleOptions",
    "parse_options",
    # Limiters
    "CompositeLimiter",
    "ConcurrencyLimiter",
    "Limiter",
    "NeverThrottled",
    "ThresholdLimiter",
    # Registry
    "StrategyRegistry",
    "get_default_registry",
    "reset_default_registry",
    "set_default_registry",
    "throttle",
    # Fetching
    "BasicFetcher",
    "ExclusionSet",
    "Fetcher",
    "MemoryFetcher",
    "PausableFetcher",
    "PausableFetcherAdapter",
    "ReliableFetcher",
    "ThrottledFetch",
    "WorkItem",
    # Finalization
    "ThrottleMiddleware",
    "build_orphan_handler",
    "finalizing",
    # Wiring
    "Throttler",
    "WorkerInfo",
    "WorkerLoop",
    "WorkerStats",
]
