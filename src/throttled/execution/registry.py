"""Strategy Registry — job class name → limiter lookup.

Manifesto:
The fetch adapter, the finalization middleware and orphan recovery all
need to resolve ``"ReportJob"`` to the same limiter. The registry
decouples declaration (at import time or startup) from resolution (on
the hot fetch path), and is an explicit object so tests can build
isolated registries.

ARCHITECTURE
────────────
::

    StrategyRegistry(store)
      ├── .register(name, options)  ─ build + store a CompositeLimiter
      ├── .add_alias(alias, target) ─ share one limiter between classes
      ├── .lookup(name)             ─ limiter, or NeverThrottled (never fails)
      ├── .has(name) / .names()     ─ introspection
      └── .unregister(name) / .clear()

    throttle(...)                   ─ decorator for job authors
    get_default_registry()          ─ lazily built module-level registry
    reset_default_registry()        ─ clear for testing

BEST PRACTICES
──────────────
- Build one registry at startup and pass it to ``Throttler``.
- Pass an explicit ``StrategyRegistry(InMemoryCounterStore())`` in tests.

Tags:
    registry, strategy, limiter, throttle
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from throttled.core.errors import ConfigError
from throttled.core.logging import get_logger
from throttled.core.store import CounterStore
from throttled.execution.limiters import (
    DEFAULT_CONCURRENCY_TTL,
    DEFAULT_KEY_PREFIX,
    CompositeLimiter,
    ConcurrencyLimiter,
    Limiter,
    NeverThrottled,
    ThresholdLimiter,
)
from throttled.execution.options import ThrottleOptions, parse_options

logger = get_logger(__name__)

T = TypeVar("T")


class StrategyRegistry:
    """Injectable registry of per-class limiters.

    Example:
        >>> registry = StrategyRegistry(InMemoryCounterStore())
        >>> registry.register("ReportJob", concurrency={"limit": 2})
        CompositeLimiter('ReportJob', [ConcurrencyLimiter('ReportJob', limit=2)])
        >>> registry.lookup("Unknown")
        NeverThrottled('Unknown')
    """

    def __init__(
        self,
        store: CounterStore,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        concurrency_ttl: int = DEFAULT_CONCURRENCY_TTL,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: Shared counter store used by every limiter built here.
            key_prefix: Namespace for store keys.
            concurrency_ttl: Default lifetime of a held concurrency slot.
            clock: Wall clock for threshold windows.
        """
        self._store = store
        self._key_prefix = key_prefix
        self._concurrency_ttl = concurrency_ttl
        self._clock = clock
        self._limiters: dict[str, CompositeLimiter] = {}
        self._aliases: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def store(self) -> CounterStore:
        return self._store

    def build(self, name: str, options: ThrottleOptions) -> CompositeLimiter:
        """Build (without storing) the limiter described by ``options``.

        Concurrency is checked before threshold, so a job deferred for
        concurrency never consumes a threshold admission.
        """
        limiters: list[Limiter] = []
        if options.concurrency is not None:
            limiters.append(
                ConcurrencyLimiter(
                    name,
                    self._store,
                    options.concurrency.limit,
                    key_suffix=options.concurrency.key_suffix,
                    ttl=options.concurrency.ttl or self._concurrency_ttl,
                    key_prefix=self._key_prefix,
                )
            )
        if options.threshold is not None:
            limiters.append(
                ThresholdLimiter(
                    name,
                    self._store,
                    options.threshold.limit,
                    options.threshold.period,
                    key_suffix=options.threshold.key_suffix,
                    key_prefix=self._key_prefix,
                    clock=self._clock,
                )
            )
        return CompositeLimiter(name, limiters)

    def register(
        self,
        name: str,
        options: ThrottleOptions | Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> CompositeLimiter:
        """Register (or replace) the limiter for ``name``.

        Args:
            name: Job class name as it appears in job payloads.
            options: ``ThrottleOptions`` or a raw mapping.
            **kwargs: ``concurrency=`` / ``threshold=`` shorthand.

        Raises:
            InvalidConfigError: If the options are malformed.
        """
        limiter = self.build(name, parse_options(options, **kwargs))
        with self._lock:
            replaced = name in self._limiters
            self._limiters[name] = limiter
            self._aliases.pop(name, None)
        logger.debug("limiter_registered", job_class=name, replaced=replaced, limiters=len(limiter))
        return limiter

    def add_alias(self, alias: str, target: str) -> Limiter:
        """Make ``alias`` resolve to ``target``'s limiter (and counters).

        Raises:
            ConfigError: If ``target`` is not registered.
        """
        with self._lock:
            if target not in self._limiters:
                raise ConfigError(f"Cannot alias {alias!r}: {target!r} is not registered")
            self._aliases[alias] = target
            self._limiters.pop(alias, None)
            return self._limiters[target]

    def lookup(self, name: str) -> Limiter:
        """Return the limiter for ``name``; ``NeverThrottled`` if unknown."""
        with self._lock:
            target = self._aliases.get(name, name)
            limiter = self._limiters.get(target)
        return limiter if limiter is not None else NeverThrottled(name)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._limiters or name in self._aliases

    def names(self) -> list[str]:
        """Registered class names and aliases, sorted."""
        with self._lock:
            return sorted([*self._limiters, *self._aliases])

    def unregister(self, name: str) -> None:
        with self._lock:
            self._limiters.pop(name, None)
            self._aliases.pop(name, None)
            for alias in [a for a, t in self._aliases.items() if t == name]:
                del self._aliases[alias]

    def clear(self) -> None:
        with self._lock:
            self._limiters.clear()
            self._aliases.clear()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._limiters) + len(self._aliases)


# --------------------------------------------------------------------------- #
# Default registry
# --------------------------------------------------------------------------- #

_default_registry: StrategyRegistry | None = None
_default_lock = threading.Lock()


def get_default_registry() -> StrategyRegistry:
    """Registry used by :func:`throttle` when none is given.

    Built on first use from :func:`~throttled.core.settings.get_settings`
    with a Redis counter store.
    """
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            from throttled.core.settings import get_settings
            from throttled.core.store import RedisCounterStore

            settings = get_settings()
            _default_registry = StrategyRegistry(
                RedisCounterStore(url=settings.redis_url),
                key_prefix=settings.key_prefix,
                concurrency_ttl=settings.concurrency_ttl,
            )
        return _default_registry


def set_default_registry(registry: StrategyRegistry | None) -> None:
    """Replace the default registry (``None`` rebuilds it on next use)."""
    global _default_registry
    with _default_lock:
        _default_registry = registry


def reset_default_registry() -> None:
    """Clear the default registry's entries (for testing)."""
    with _default_lock:
        if _default_registry is not None:
            _default_registry.clear()


def throttle(
    name: str | None = None,
    *,
    registry: StrategyRegistry | None = None,
    concurrency: Mapping[str, Any] | None = None,
    threshold: Mapping[str, Any] | None = None,
    alias_of: str | None = None,
) -> Callable[[T], T]:
    """Decorator declaring throttle options for a job function or class.

    The job is registered under ``name`` or, by default, its ``__name__``.
    ``alias_of`` shares another job's limiter instead of declaring options.

    Example:
        >>> @throttle(concurrency={"limit": 5}, threshold={"limit": 100, "period": 60})
        ... def sync_account(account_id):
        ...     ...
    """

    def decorator(job: T) -> T:
        target = registry if registry is not None else get_default_registry()
        job_name = name or getattr(job, "__name__", None)
        if not job_name:
            raise ConfigError(f"Cannot derive a job class name from {job!r}")

        if alias_of is not None:
            if concurrency is not None or threshold is not None:
                raise ConfigError(f"{job_name!r}: alias_of cannot be combined with options")
            target.add_alias(job_name, alias_of)
        else:
            options = {
                key: value
                for key, value in (("concurrency", concurrency), ("threshold", threshold))
                if value is not None
            }
            target.register(job_name, options)
        return job

    return decorator


__all__ = [
    "StrategyRegistry",
    "get_default_registry",
    "reset_default_registry",
    "set_default_registry",
    "throttle",
]
