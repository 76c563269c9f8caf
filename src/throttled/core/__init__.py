"""Throttling infrastructure — errors, logging, settings, message codec, counter store."""

from throttled.core.errors import (
    AdmissionCheckError,
    BackendError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    MessageError,
    RequeueError,
    StoreError,
    ThrottleError,
    is_fail_open,
)
from throttled.core.message import JobMessage, decode_message, encode_message
from throttled.core.store import CounterStore, InMemoryCounterStore, RedisCounterStore

__all__ = [
    "AdmissionCheckError",
    "BackendError",
    "ConfigError",
    "CounterStore",
    "ErrorCategory",
    "ErrorContext",
    "InMemoryCounterStore",
    "InvalidConfigError",
    "JobMessage",
    "MessageError",
    "RedisCounterStore",
    "RequeueError",
    "StoreError",
    "ThrottleError",
    "decode_message",
    "encode_message",
    "is_fail_open",
]
