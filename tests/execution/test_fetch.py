"""Tests for ThrottledFetch — admission at the fetch boundary."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from throttled.core.errors import RequeueError, StoreError
from throttled.core.message import decode_message, encode_message
from throttled.execution.exclusion import ExclusionSet
from throttled.execution.fetch import ThrottledFetch
from throttled.execution.fetchers.memory import MemoryFetcher, MemoryWorkItem
from throttled.execution.registry import StrategyRegistry
from throttled.execution.throttler import Throttler


def drain(fetch: ThrottledFetch, attempts: int = 20) -> list:
    """Retrieve until ``None``; returns admitted work items."""
    admitted = []
    for _ in range(attempts):
        work = fetch.retrieve_work()
        if work is None:
            break
        admitted.append(work)
    return admitted


class TestThresholdScenario:
    """Foo: at most 5 admissions per 10 seconds."""

    def test_sixth_job_is_deferred_until_next_window(self, registry, fetch, memory_fetcher, clock):
        registry.register("Foo", threshold={"limit": 5, "period": 10})
        clock.now = 1_000_000.0
        raws = [memory_fetcher.enqueue("Foo", [i], job_id=f"j{i}") for i in range(6)]

        admitted = drain(fetch)
        assert [w.raw_message for w in admitted] == raws[:5]
        assert memory_fetcher.messages("default") == [raws[5]]
        assert fetch.excluded_queues() == frozenset({"default"})

        clock.advance(10)
        work = fetch.retrieve_work()
        assert work.raw_message == raws[5]

    def test_ten_jobs_admitted_five_per_window(self, registry, fetch, memory_fetcher, clock):
        registry.register("Foo", threshold={"limit": 5, "period": 10})
        clock.now = 1_000_000.0
        raws = [memory_fetcher.enqueue("Foo", [i], job_id=f"j{i}") for i in range(10)]

        assert [w.raw_message for w in drain(fetch)] == raws[:5]
        assert memory_fetcher.messages("default") == raws[5:]

        # each cooldown expiry retries the front job and excludes the queue again
        for _ in range(9):
            clock.advance(1)
            assert fetch.retrieve_work() is None
            assert memory_fetcher.messages("default") == raws[5:]
            assert fetch.excluded_queues() == frozenset({"default"})

        clock.advance(1)
        assert [w.raw_message for w in drain(fetch)] == raws[5:]
        assert memory_fetcher.size("default") == 0


class TestConcurrencyScenario:
    """Bar: at most 2 in flight."""

    def test_third_job_waits_for_finalize(self, registry, fetch, memory_fetcher, throttler, clock):
        registry.register("Bar", concurrency={"limit": 2})
        raws = [memory_fetcher.enqueue("Bar", job_id=f"j{i}") for i in range(3)]

        first, second = fetch.retrieve_work(), fetch.retrieve_work()
        assert fetch.retrieve_work() is None
        assert memory_fetcher.messages("default") == [raws[2]]

        throttler.finalize(first.raw_message)
        clock.advance(1)
        third = fetch.retrieve_work()
        assert third.raw_message == raws[2]
        assert second is not None

    def test_queue_not_polled_during_cooldown(self, registry, fetch, memory_fetcher, throttler, clock):
        registry.register("Bar", concurrency={"limit": 1})
        memory_fetcher.enqueue("Bar", job_id="j1")
        memory_fetcher.enqueue("Bar", job_id="j2")

        first = fetch.retrieve_work()
        assert fetch.retrieve_work() is None
        throttler.finalize(first.raw_message)

        clock.advance(0.5)
        assert fetch.retrieve_work() is None
        assert memory_fetcher.size("default") == 1

    def test_dynamic_limit_per_tenant(self, registry, fetch, memory_fetcher):
        registry.register("Bar", concurrency={"limit": lambda tenant: 1, "key_suffix": lambda tenant: tenant})
        memory_fetcher.enqueue("Bar", ["acme"], job_id="j1")
        memory_fetcher.enqueue("Bar", ["globex"], job_id="j2")
        assert len(drain(fetch)) == 2


class TestOtherQueuesKeepFlowing:
    def test_excluded_queue_does_not_block_others(self, registry, throttler, exclusions):
        fetcher = MemoryFetcher(["critical", "default"], timeout=0.01)
        fetch = ThrottledFetch(fetcher, throttler, exclusions=exclusions)
        registry.register("Blocked", concurrency={"limit": 0})
        fetcher.enqueue("Blocked", queue="critical", job_id="b1")
        fetcher.enqueue("Free", queue="default", job_id="f1")

        assert fetch.retrieve_work() is None
        work = fetch.retrieve_work()
        assert decode_message(work.raw_message).job_id == "f1"
        assert fetcher.messages("critical") != []


class TestEffectiveClass:
    def test_wrapped_class_is_throttled(self, registry, fetch, memory_fetcher):
        registry.register("Foo", concurrency={"limit": 1})
        memory_fetcher.push("default", encode_message("JobWrapper", wrapped="Foo", job_id="j1"))
        memory_fetcher.push("default", encode_message("JobWrapper", wrapped="Foo", job_id="j2"))
        assert len(drain(fetch)) == 1

    def test_wrapper_limits_do_not_apply(self, registry, fetch, memory_fetcher):
        registry.register("JobWrapper", concurrency={"limit": 0})
        memory_fetcher.push("default", encode_message("JobWrapper", wrapped="Foo", job_id="j1"))
        assert fetch.retrieve_work() is not None


class TestFailOpen:
    def test_unknown_class_is_admitted(self, fetch, memory_fetcher):
        memory_fetcher.enqueue("Unregistered", job_id="j1")
        assert fetch.retrieve_work() is not None

    def test_undecodable_message_is_admitted(self, fetch, memory_fetcher):
        memory_fetcher.push("default", "{not json")
        work = fetch.retrieve_work()
        assert work.raw_message == "{not json"
        assert fetch.excluded_queues() == frozenset()

    def test_store_failure_admits(self, memory_fetcher, settings, exclusions):
        store = MagicMock()
        store.reserve.side_effect = StoreError("down")
        registry = StrategyRegistry(store)
        registry.register("Bar", concurrency={"limit": 1})
        fetch = ThrottledFetch(memory_fetcher, Throttler(registry, settings=settings), exclusions=exclusions)

        memory_fetcher.enqueue("Bar", job_id="j1")
        assert fetch.retrieve_work() is not None

    def test_failed_rollback_still_defers(self, memory_fetcher, settings, exclusions):
        store = MagicMock()
        store.reserve.return_value = True
        store.increment_window.return_value = False
        store.release.side_effect = StoreError("down")
        registry = StrategyRegistry(store)
        registry.register("Foo", concurrency={"limit": 2}, threshold={"limit": 5, "period": 10})
        fetch = ThrottledFetch(memory_fetcher, Throttler(registry, settings=settings), exclusions=exclusions)

        raw = memory_fetcher.enqueue("Foo", job_id="j1")
        assert fetch.retrieve_work() is None
        assert memory_fetcher.messages("default") == [raw]
        assert fetch.excluded_queues() == frozenset({"default"})

    def test_failing_dynamic_option_admits(self, registry, fetch, memory_fetcher):
        registry.register("Bar", concurrency={"limit": lambda *_: 1 / 0})
        memory_fetcher.enqueue("Bar", job_id="j1")
        assert fetch.retrieve_work() is not None


class TestRequeueFailures:
    @pytest.fixture
    def throttled_all(self):
        throttler = MagicMock()
        throttler.is_throttled.return_value = True
        return throttler

    def test_requeue_error_propagates(self, throttled_all, exclusions):
        work = MagicMock(queue_name="default", raw_message="x")
        work.requeue_to_front.side_effect = RuntimeError("gone")
        fetcher = MagicMock()
        fetcher.retrieve_work.return_value = work

        fetch = ThrottledFetch(fetcher, throttled_all, exclusions=exclusions)
        with pytest.raises(RequeueError) as exc_info:
            fetch.retrieve_work()
        assert exc_info.value.context.queue == "default"
        assert fetch.excluded_queues() == frozenset()

    def test_requeue_error_is_not_rewrapped(self, throttled_all, exclusions):
        work = MagicMock(queue_name="default", raw_message="x")
        original = RequeueError("backend gone")
        work.requeue_to_front.side_effect = original
        fetcher = MagicMock()
        fetcher.retrieve_work.return_value = work

        with pytest.raises(RequeueError) as exc_info:
            ThrottledFetch(fetcher, throttled_all, exclusions=exclusions).retrieve_work()
        assert exc_info.value is original

    def test_interrupt_during_check_requeues(self, memory_fetcher, exclusions):
        throttler = MagicMock()
        throttler.is_throttled.side_effect = KeyboardInterrupt
        memory_fetcher.push("default", "x")

        with pytest.raises(KeyboardInterrupt):
            ThrottledFetch(memory_fetcher, throttler, exclusions=exclusions).retrieve_work()
        assert memory_fetcher.messages("default") == ["x"]


class TestThrottledFetchSurface:
    def test_requires_fetcher(self, throttler):
        with pytest.raises(ValueError):
            ThrottledFetch(None, throttler)

    def test_cooldown_defaults_to_settings(self, memory_fetcher, throttler):
        assert ThrottledFetch(memory_fetcher, throttler).cooldown == 1.0

    def test_cooldown_override(self, memory_fetcher, throttler):
        fetch = ThrottledFetch(memory_fetcher, throttler, cooldown=3)
        assert fetch.cooldown == 3
        assert fetch.exclusions.cooldown == 3

    def test_empty_exclusion_set_is_kept(self, memory_fetcher, throttler, exclusions):
        assert len(exclusions) == 0
        assert ThrottledFetch(memory_fetcher, throttler, exclusions=exclusions).exclusions is exclusions

    def test_cooldown_from_exclusions(self, memory_fetcher, throttler, clock):
        fetch = ThrottledFetch(memory_fetcher, throttler, exclusions=ExclusionSet(7, clock=clock))
        assert fetch.cooldown == 7

    def test_empty_fetch(self, fetch):
        assert fetch.retrieve_work() is None

    def test_bulk_requeue_passthrough(self, fetch, memory_fetcher):
        items = [MemoryWorkItem("default", "a", memory_fetcher), MemoryWorkItem("default", "b", memory_fetcher)]
        fetch.bulk_requeue(items)
        assert memory_fetcher.messages("default") == ["a", "b"]
