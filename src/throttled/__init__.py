"""
throttled - concurrency and threshold throttling for queue workers.

Declare limits per job class, wrap the worker's fetcher, and finalize
after execution:

    from throttled import StrategyRegistry, RedisCounterStore, Throttler

    registry = StrategyRegistry(RedisCounterStore(url="redis://localhost:6379/0"))
    registry.register("ReportJob", concurrency={"limit": 2},
                      threshold={"limit": 100, "period": 3600})
    fetch = Throttler(registry).setup(BasicFetcher(["reports"]))
"""

__version__ = "0.1.0"

from throttled.core import *  # noqa
from throttled.execution import *  # noqa
