"""
Shared counter store — the atomicity boundary for every limiter.

Limiters are stateless façades; all limit state lives in a store reachable
from every worker process. Each store operation is a single atomic
check-and-mutate step, so no additional locking is needed around it.

Manifesto:
    In-process counters undercount as soon as a second worker process
    starts. The store, not process memory, is the source of truth.

    - **Protocol-based:** ``CounterStore`` defines the contract
    - **Atomic:** Redis implementation runs each operation as a Lua script
    - **Self-healing:** every key carries a TTL so abandoned state expires

Architecture:
    ::

        CounterStore (Protocol)
        ├── InMemoryCounterStore  — single process, one lock (tests, dev)
        └── RedisCounterStore     — distributed, Lua scripts

        reserve(key, member, limit, ttl)        → bool   (concurrency)
        release(key, member)                    → None
        occupancy(key)                          → int
        increment_window(key, limit, period)    → bool   (threshold)
        window_count(key)                       → int

Guardrails:
    ❌ DON'T: Use InMemoryCounterStore across processes (no sharing)
    ✅ DO: Use RedisCounterStore whenever more than one process fetches

Tags:
    store, redis, lua, atomic, counters
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis

from throttled.core.errors import StoreError


class CounterStore(Protocol):
    """Protocol for atomic limiter state operations."""

    def reserve(self, key: str, member: str, limit: int, ttl: float) -> bool:
        """Reserve a slot for ``member`` in the set at ``key``.

        Idempotent: a member that already holds a slot keeps it and the call
        returns ``True`` without consuming another one.

        Returns:
            ``True`` if ``member`` holds a slot afterwards, ``False`` if the
            set is full (nothing was reserved).
        """
        ...

    def release(self, key: str, member: str) -> None:
        """Release ``member``'s slot. No-op if it holds none."""
        ...

    def occupancy(self, key: str) -> int:
        """Number of live slots at ``key``."""
        ...

    def increment_window(self, key: str, limit: int, period: float) -> bool:
        """Count one admission in the window counter at ``key``.

        The counter expires ``period`` seconds after its first increment.
        An increment that would exceed ``limit`` is rolled back.

        Returns:
            ``True`` if the admission was counted, ``False`` if over limit.
        """
        ...

    def window_count(self, key: str) -> int:
        """Current value of the window counter at ``key``."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Store
# ------------------------------------------------------------------ #


class InMemoryCounterStore:
    """Counter store kept in process memory.

    Every operation holds one lock, which makes it atomic for threads of a
    single process. Expiry is checked lazily on access.

    Example:
        store = InMemoryCounterStore()
        store.reserve("throttled:concurrency:Foo", "jid-1", limit=2, ttl=900)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._slots: dict[str, dict[str, float]] = {}
        self._windows: dict[str, tuple[int, float]] = {}
        self._next_sweep = 0.0

    def _live_slots(self, key: str, now: float) -> dict[str, float]:
        slots = self._slots.get(key, {})
        live = {m: expires_at for m, expires_at in slots.items() if expires_at > now}
        if live:
            self._slots[key] = live
        else:
            self._slots.pop(key, None)
        return live

    def reserve(self, key: str, member: str, limit: int, ttl: float) -> bool:
        with self._lock:
            now = self._clock()
            slots = self._live_slots(key, now)
            if member in slots:
                return True
            if len(slots) >= limit:
                return False
            slots[member] = now + ttl
            self._slots[key] = slots
            return True

    def release(self, key: str, member: str) -> None:
        with self._lock:
            slots = self._slots.get(key)
            if slots is not None:
                slots.pop(member, None)
                if not slots:
                    del self._slots[key]

    def occupancy(self, key: str) -> int:
        with self._lock:
            return len(self._live_slots(key, self._clock()))

    def _live_window(self, key: str, now: float) -> tuple[int, float] | None:
        entry = self._windows.get(key)
        if entry is not None and entry[1] <= now:
            del self._windows[key]
            return None
        return entry

    def _sweep_windows(self, now: float, period: float) -> None:
        # Window ids are part of the key, so a past window is never read again.
        if now < self._next_sweep:
            return
        for key in [k for k, (_, expires_at) in self._windows.items() if expires_at <= now]:
            del self._windows[key]
        self._next_sweep = now + period

    def increment_window(self, key: str, limit: int, period: float) -> bool:
        with self._lock:
            now = self._clock()
            self._sweep_windows(now, period)
            entry = self._live_window(key, now)
            count, expires_at = entry if entry else (0, now + period)
            if count + 1 > limit:
                return False
            self._windows[key] = (count + 1, expires_at)
            return True

    def window_count(self, key: str) -> int:
        with self._lock:
            entry = self._live_window(key, self._clock())
            return entry[0] if entry else 0

    def clear(self) -> None:
        """Drop all state (tests only)."""
        with self._lock:
            self._slots.clear()
            self._windows.clear()
            self._next_sweep = 0.0


# ------------------------------------------------------------------ #
# Redis Store
# ------------------------------------------------------------------ #

# Slot scores are expiry instants taken from the server clock, so every
# worker prunes against the same time source.
RESERVE_SCRIPT = """
local key, member = KEYS[1], ARGV[1]
local limit, ttl = tonumber(ARGV[2]), tonumber(ARGV[3])
local t = redis.call("TIME")
local now = tonumber(t[1]) + tonumber(t[2]) / 1000000

redis.call("ZREMRANGEBYSCORE", key, "-inf", now)

if redis.call("ZSCORE", key, member) then
  return 1
end

if redis.call("ZCARD", key) >= limit then
  return 0
end

redis.call("ZADD", key, now + ttl, member)
redis.call("PEXPIRE", key, math.ceil(ttl * 1000))
return 1
"""

OCCUPANCY_SCRIPT = """
local t = redis.call("TIME")
local now = tonumber(t[1]) + tonumber(t[2]) / 1000000
return redis.call("ZCOUNT", KEYS[1], "(" .. now, "+inf")
"""

INCREMENT_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit, period_ms = tonumber(ARGV[1]), tonumber(ARGV[2])
local count = redis.call("INCR", key)

if count == 1 then
  redis.call("PEXPIRE", key, period_ms)
end

if count > limit then
  redis.call("DECR", key)
  return 0
end

return 1
"""


class RedisCounterStore:
    """Redis-backed counter store.

    Concurrency slots live in sorted sets (member = job id, score = slot
    expiry); threshold windows are plain integer keys. Check-and-mutate
    steps run as Lua scripts, which Redis executes atomically.

    Example:
        store = RedisCounterStore(url="redis://localhost:6379/0")
        store.increment_window("throttled:threshold:Foo:2871", limit=5, period=10)

    Raises:
        StoreError: On any Redis failure (connection, timeout, script error).
    """

    def __init__(self, client: Any = None, *, url: str | None = None):
        """Initialize the store.

        Args:
            client: Pre-built ``redis.Redis`` client (takes precedence).
            url: Connection URL used when ``client`` is not given.
        """
        if client is None:
            if url is None:
                from throttled.core.settings import get_settings

                url = get_settings().redis_url
            client = redis.from_url(url)

        self._client = client
        self._reserve = client.register_script(RESERVE_SCRIPT)
        self._occupancy = client.register_script(OCCUPANCY_SCRIPT)
        self._increment_window = client.register_script(INCREMENT_WINDOW_SCRIPT)

    @property
    def client(self) -> Any:
        return self._client

    def reserve(self, key: str, member: str, limit: int, ttl: float) -> bool:
        try:
            return bool(self._reserve(keys=[key], args=[member, limit, ttl]))
        except redis.RedisError as exc:
            raise StoreError("Concurrency reserve failed", cause=exc).with_context(key=key) from exc

    def release(self, key: str, member: str) -> None:
        try:
            self._client.zrem(key, member)
        except redis.RedisError as exc:
            raise StoreError("Concurrency release failed", cause=exc).with_context(key=key) from exc

    def occupancy(self, key: str) -> int:
        try:
            return int(self._occupancy(keys=[key]))
        except redis.RedisError as exc:
            raise StoreError("Occupancy query failed", cause=exc).with_context(key=key) from exc

    def increment_window(self, key: str, limit: int, period: float) -> bool:
        period_ms = max(1, int(period * 1000))
        try:
            return bool(self._increment_window(keys=[key], args=[limit, period_ms]))
        except redis.RedisError as exc:
            raise StoreError("Threshold increment failed", cause=exc).with_context(key=key) from exc

    def window_count(self, key: str) -> int:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise StoreError("Threshold query failed", cause=exc).with_context(key=key) from exc
        return int(raw) if raw is not None else 0


__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "RESERVE_SCRIPT",
    "OCCUPANCY_SCRIPT",
    "INCREMENT_WINDOW_SCRIPT",
]
