"""Fetchers — queue backends the throttled fetch adapter wraps.

::

    Fetcher (Protocol)            retrieve_work(excluded) / bulk_requeue(items)
      ├── MemoryFetcher           in-process deques (tests, dev)
      ├── BasicFetcher            Redis BRPOP polling
      └── ReliableFetcher         Redis LMOVE/BLMOVE + orphan recovery

    PausableFetcher (Protocol)    notify("pause"|"unpause", queue)
      └── PausableFetcherAdapter  presents it as a Fetcher
"""

from throttled.execution.fetchers.basic import BasicFetcher, RedisWorkItem
from throttled.execution.fetchers.memory import MemoryFetcher, MemoryWorkItem
from throttled.execution.fetchers.pausable import PausableFetcherAdapter
from throttled.execution.fetchers.protocol import Fetcher, PausableFetcher, WorkItem
from throttled.execution.fetchers.reliable import ReliableFetcher

__all__ = [
    "BasicFetcher",
    "Fetcher",
    "MemoryFetcher",
    "MemoryWorkItem",
    "PausableFetcher",
    "PausableFetcherAdapter",
    "RedisWorkItem",
    "ReliableFetcher",
    "WorkItem",
]
