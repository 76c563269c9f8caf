"""Tests for the job message codec."""

import json

import pytest

from throttled.core.errors import MessageError
from throttled.core.message import DEFAULT_QUEUE, JobMessage, decode_message, encode_message


class TestDecodeMessage:
    """decode_message accepts str, bytes and dict payloads."""

    def test_decode_str(self):
        msg = decode_message('{"class": "Foo", "jid": "j1", "args": [1, "a"], "queue": "reports"}')
        assert msg == JobMessage("Foo", "j1", (1, "a"), "reports")

    def test_decode_bytes(self):
        msg = decode_message(b'{"class": "Foo", "jid": "j1"}')
        assert msg.class_name == "Foo"
        assert msg.args == ()

    def test_decode_dict_keeps_payload(self):
        payload = {"class": "Foo", "jid": "j1", "retry": True}
        msg = decode_message(payload)
        assert msg.payload["retry"] is True

    def test_default_queue(self):
        assert decode_message({"class": "Foo", "jid": "j1"}).queue_name == DEFAULT_QUEUE

    def test_wrapped_class_is_effective(self):
        msg = decode_message({"class": "JobWrapper", "wrapped": "Foo", "jid": "j1"})
        assert msg.class_name == "JobWrapper"
        assert msg.effective_class == "Foo"

    def test_effective_class_without_wrapper(self):
        assert decode_message({"class": "Foo", "jid": "j1"}).effective_class == "Foo"

    def test_non_string_wrapped_is_ignored(self):
        msg = decode_message({"class": "JobWrapper", "wrapped": 7, "jid": "j1"})
        assert msg.effective_class == "JobWrapper"

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "[1, 2]",
            '{"jid": "j1"}',
            '{"class": "Foo"}',
            '{"class": "", "jid": "j1"}',
            '{"class": "Foo", "jid": "j1", "args": "nope"}',
        ],
    )
    def test_invalid_payloads(self, raw):
        with pytest.raises(MessageError):
            decode_message(raw)

    def test_missing_jid_carries_class(self):
        with pytest.raises(MessageError) as exc_info:
            decode_message({"class": "Foo"})
        assert exc_info.value.context.job_class == "Foo"


class TestEncodeMessage:
    def test_encode_fields(self):
        raw = encode_message("Foo", [1, 2], queue="reports", job_id="abc")
        assert json.loads(raw) == {"class": "Foo", "jid": "abc", "args": [1, 2], "queue": "reports"}

    def test_generates_job_id(self):
        first = json.loads(encode_message("Foo"))["jid"]
        second = json.loads(encode_message("Foo"))["jid"]
        assert len(first) == 24
        assert first != second

    def test_wrapped_and_extra(self):
        payload = json.loads(encode_message("JobWrapper", wrapped="Foo", retry=3))
        assert payload["wrapped"] == "Foo"
        assert payload["retry"] == 3

    def test_encoded_payload_decodes(self):
        msg = decode_message(encode_message("Foo", (5,), job_id="j9"))
        assert (msg.class_name, msg.job_id, msg.args) == ("Foo", "j9", (5,))
