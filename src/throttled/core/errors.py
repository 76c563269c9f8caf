"""
Structured error types for the throttling layer.

Every failure the throttling layer can raise is a :class:`ThrottleError`
carrying a category, structured context and an optional chained cause, so
callers can log it uniformly and decide whether to fail open.

Manifesto:
    - **Typed hierarchy:** message, store, config and backend failures are
      distinct types, not stringly-typed exceptions
    - **Fail-open friendly:** the admission path can catch exactly the
      errors that must not stall a queue (``MessageError``,
      ``AdmissionCheckError``) and let the rest propagate
    - **Rich context:** job class, job id and queue travel with the error

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────┐
        │                     ThrottleError                        │
        │           (category, context, cause, to_dict)            │
        ├─────────────────────────────────────────────────────────┤
        │  ConfigError        MessageError       StoreError        │
        │  (CONFIG)           (MESSAGE)          (STORE)           │
        │     │                                                    │
        │  InvalidConfigError                                      │
        │                                                          │
        │  AdmissionCheckError                BackendError         │
        │  (ADMISSION)                        (BACKEND)            │
        │                                        │                 │
        │                                     RequeueError         │
        └─────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: Swallow ``RequeueError`` — a lost requeue loses a job
    ✅ DO: Treat ``AdmissionCheckError`` as "admit" at the fetch boundary

Tags:
    errors, exceptions, fail-open, throttling
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"           # Invalid throttle options or settings
    MESSAGE = "MESSAGE"         # Malformed or incomplete job payload
    STORE = "STORE"             # Counter store unreachable or script failure
    ADMISSION = "ADMISSION"     # Admission check could not be completed
    BACKEND = "BACKEND"         # Queue backend rejected an operation
    INTERNAL = "INTERNAL"       # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        job_class: Effective job class name
        job_id: Job identifier
        queue: Queue the job came from
        metadata: Additional key-value pairs
    """

    job_class: str | None = None
    job_id: str | None = None
    queue: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_class", "job_id", "queue"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ThrottleError(Exception):
    """Base exception for all throttling errors.

    Subclasses set ``default_category``. The cause, when given, is chained
    as ``__cause__`` so tracebacks keep the original failure.

    Example:
        >>> err = ThrottleError("boom").with_context(job_class="Foo", shard=3)
        >>> err.to_dict()["context"]
        {'job_class': 'Foo', 'shard': 3}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ThrottleError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class ConfigError(ThrottleError):
    """Configuration problem detected at registration or startup."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """Throttle options have an invalid shape or value."""

    def __init__(self, key: str, reason: str, **kwargs: Any):
        super().__init__(f"Invalid throttle option '{key}': {reason}", **kwargs)
        self.key = key
        self.reason = reason


class MessageError(ThrottleError):
    """Job payload could not be decoded or lacks required fields."""

    default_category = ErrorCategory.MESSAGE


class StoreError(ThrottleError):
    """Counter store operation failed."""

    default_category = ErrorCategory.STORE


class AdmissionCheckError(ThrottleError):
    """A limiter could not decide whether a job is throttled.

    Raised for store failures and for exceptions coming out of dynamic
    ``limit``/``period``/``key_suffix`` callables. The fetch boundary
    treats it as "not throttled".
    """

    default_category = ErrorCategory.ADMISSION


class BackendError(ThrottleError):
    """Queue backend operation failed."""

    default_category = ErrorCategory.BACKEND


class RequeueError(BackendError):
    """A throttled item could not be pushed back to its queue."""


def is_fail_open(error: Exception) -> bool:
    """Return True if ``error`` should resolve to "admit" on the fetch path."""
    return isinstance(error, (MessageError, AdmissionCheckError))


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ThrottleError",
    "ConfigError",
    "InvalidConfigError",
    "MessageError",
    "StoreError",
    "AdmissionCheckError",
    "BackendError",
    "RequeueError",
    "is_fail_open",
]
