"""Job message codec — the fields throttling decisions need.

Queued jobs travel as JSON objects::

    {"class": "ReportJob", "jid": "b4a57f...", "args": [42, "eu"],
     "queue": "reports"}

Adapter layers that wrap a logical job inside a generic envelope put the
logical class under ``"wrapped"``; that class is the *effective* class
used for limiter lookup.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from throttled.core.errors import MessageError

DEFAULT_QUEUE = "default"


@dataclass(frozen=True)
class JobMessage:
    """Immutable view of a queued job.

    Attributes:
        class_name: Class recorded by the producer
        job_id: Opaque unique job identifier
        args: Positional job arguments
        queue_name: Queue the job was pushed to
        wrapped_class_name: Logical class inside an adapter envelope
        payload: The decoded payload, untouched
    """

    class_name: str
    job_id: str
    args: tuple[Any, ...] = ()
    queue_name: str = DEFAULT_QUEUE
    wrapped_class_name: str | None = None
    payload: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def effective_class(self) -> str:
        """Class used for limiter lookup."""
        return self.wrapped_class_name or self.class_name


def decode_message(raw: str | bytes | dict[str, Any]) -> JobMessage:
    """Decode a raw job payload.

    Raises:
        MessageError: Invalid JSON, non-object payload, missing ``class`` or
            ``jid``, or ``args`` that is not a list.
    """
    if isinstance(raw, dict):
        payload = raw
    else:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
            raise MessageError("Job payload is not valid JSON", cause=exc) from exc

    if not isinstance(payload, dict):
        raise MessageError(f"Job payload must be an object, got {type(payload).__name__}")

    class_name = payload.get("class")
    job_id = payload.get("jid")
    if not class_name or not isinstance(class_name, str):
        raise MessageError("Job payload has no 'class'")
    if not job_id or not isinstance(job_id, str):
        raise MessageError("Job payload has no 'jid'").with_context(job_class=class_name)

    args = payload.get("args") or []
    if not isinstance(args, list):
        raise MessageError("Job 'args' must be a list").with_context(
            job_class=class_name, job_id=job_id
        )

    wrapped = payload.get("wrapped")
    if wrapped is not None and not isinstance(wrapped, str):
        wrapped = None

    return JobMessage(
        class_name=class_name,
        job_id=job_id,
        args=tuple(args),
        queue_name=payload.get("queue") or DEFAULT_QUEUE,
        wrapped_class_name=wrapped or None,
        payload=payload,
    )


def encode_message(
    class_name: str,
    args: list[Any] | tuple[Any, ...] = (),
    *,
    queue: str = DEFAULT_QUEUE,
    job_id: str | None = None,
    wrapped: str | None = None,
    **extra: Any,
) -> str:
    """Build a JSON job payload. A job id is generated when not given."""
    payload: dict[str, Any] = {
        "class": class_name,
        "jid": job_id or uuid.uuid4().hex[:24],
        "args": list(args),
        "queue": queue,
    }
    if wrapped:
        payload["wrapped"] = wrapped
    payload.update(extra)
    return json.dumps(payload)


__all__ = ["DEFAULT_QUEUE", "JobMessage", "decode_message", "encode_message"]
