"""Tests for ReliableFetcher with a mocked redis client."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import redis

from throttled.core.errors import BackendError, RequeueError
from throttled.execution.fetchers import ReliableFetcher
from throttled.execution.fetchers.reliable import default_identity


@pytest.fixture
def client():
    client = MagicMock()
    client.lmove.return_value = None
    client.blmove.return_value = None
    return client


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def fetcher(client, sleep):
    return ReliableFetcher(["reports", "default"], client, identity="w1", timeout=2, heartbeat_ttl=30, sleep=sleep)


class TestKeys:
    def test_processing_key(self, fetcher):
        assert fetcher.processing_key("reports") == "processing:w1:reports"
        assert fetcher.processing_key("reports", "w2") == "processing:w2:reports"

    def test_heartbeat_key(self, fetcher):
        assert fetcher.heartbeat_key() == "heartbeat:w1"

    def test_default_identity_has_no_colon(self):
        assert ":" not in default_identity()

    def test_identity_with_colon_is_rejected(self, client):
        with pytest.raises(ValueError, match="identity"):
            ReliableFetcher(["reports"], client, identity="host:1234")


class TestRetrieveWork:
    def test_nonblocking_move_first(self, fetcher, client):
        client.lmove.side_effect = [None, b"payload"]
        work = fetcher.retrieve_work()

        assert (work.queue_name, work.raw_message) == ("default", b"payload")
        client.lmove.assert_called_with("queue:default", "processing:w1:default", src="RIGHT", dest="LEFT")
        client.blmove.assert_not_called()

    def test_blocking_move_rotates(self, fetcher, client):
        fetcher.retrieve_work()
        fetcher.retrieve_work()
        sources = [c.args[0] for c in client.blmove.call_args_list]
        assert sources == ["queue:reports", "queue:default"]
        client.blmove.assert_called_with(
            "queue:default", "processing:w1:default", 2, src="RIGHT", dest="LEFT"
        )

    def test_excluded_queues_are_skipped(self, fetcher, client):
        fetcher.retrieve_work(frozenset({"reports"}))
        assert [c.args[0] for c in client.lmove.call_args_list] == ["queue:default"]

    def test_sleeps_when_all_excluded(self, fetcher, client, sleep):
        assert fetcher.retrieve_work(frozenset({"reports", "default"})) is None
        sleep.assert_called_once_with(2)
        client.lmove.assert_not_called()

    def test_redis_failure(self, fetcher, client):
        client.lmove.side_effect = redis.TimeoutError("slow")
        with pytest.raises(BackendError):
            fetcher.retrieve_work()


class TestAcknowledgeAndRequeue:
    @pytest.fixture
    def work(self, fetcher, client):
        client.lmove.side_effect = [b"payload"]
        return fetcher.retrieve_work()

    def test_acknowledge_removes_from_processing(self, work, client):
        work.acknowledge()
        client.lrem.assert_called_once_with("processing:w1:reports", 1, b"payload")

    def test_requeue_to_front_is_transactional(self, work, client):
        pipe = client.pipeline.return_value.__enter__.return_value
        work.requeue_to_front()
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.lrem.assert_called_once_with("processing:w1:reports", 1, b"payload")
        pipe.rpush.assert_called_once_with("queue:reports", b"payload")
        pipe.execute.assert_called_once()

    def test_requeue_to_back(self, work, client):
        pipe = client.pipeline.return_value.__enter__.return_value
        work.requeue()
        pipe.lpush.assert_called_once_with("queue:reports", b"payload")

    def test_requeue_failure(self, work, client):
        client.pipeline.return_value.__enter__.return_value.execute.side_effect = redis.ConnectionError()
        with pytest.raises(RequeueError):
            work.requeue_to_front()

    def test_bulk_requeue(self, fetcher, client, work):
        pipe = client.pipeline.return_value.__enter__.return_value
        fetcher.bulk_requeue([work])
        pipe.rpush.assert_called_once_with("queue:reports", b"payload")


class TestHeartbeatAndOrphans:
    def test_heartbeat_sets_ttl(self, fetcher, client):
        fetcher.heartbeat()
        args, kwargs = client.set.call_args
        assert args[0] == "heartbeat:w1"
        assert kwargs == {"ex": 30}

    def test_heartbeat_failure(self, fetcher, client):
        client.set.side_effect = redis.ConnectionError()
        with pytest.raises(BackendError):
            fetcher.heartbeat()

    def test_recovers_dead_worker_jobs(self, fetcher, client):
        handler = MagicMock()
        fetcher.orphan_handler = handler
        client.scan_iter.return_value = [b"processing:dead:reports", b"processing:w1:reports", b"processing:alive:default"]
        client.exists.side_effect = lambda key: key == "heartbeat:alive"
        client.lmove.side_effect = [b"j2", b"j1", None]

        assert fetcher.recover_orphans() == 2
        client.lmove.assert_called_with("processing:dead:reports", "queue:reports", src="LEFT", dest="RIGHT")
        assert [c.args[0] for c in handler.call_args_list] == [b"j2", b"j1"]

    def test_handler_failure_does_not_stop_recovery(self, fetcher, client):
        fetcher.orphan_handler = MagicMock(side_effect=RuntimeError("boom"))
        client.scan_iter.return_value = ["processing:dead:reports"]
        client.exists.return_value = 0
        client.lmove.side_effect = [b"j1", b"j2", None]
        assert fetcher.recover_orphans() == 2

    def test_scan_failure(self, fetcher, client):
        client.scan_iter.side_effect = redis.ConnectionError()
        with pytest.raises(BackendError):
            fetcher.recover_orphans()
