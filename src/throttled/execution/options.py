"""Declarative throttle options for job classes.

Job authors describe limits per job class; every value may be a literal
or a callable that receives the job's positional arguments::

    {
        "concurrency": {"limit": 10, "key_suffix": lambda tenant, *_: tenant},
        "threshold": {"limit": 1_000, "period": timedelta(hours=1)},
    }

Options are validated once at registration; callables are evaluated on
every check with that check's arguments.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from throttled.core.errors import InvalidConfigError

IntOption = int | Callable[..., int]
PeriodOption = float | timedelta | Callable[..., float | timedelta]


class ConcurrencyOptions(BaseModel):
    """Cap on simultaneously running jobs.

    Attributes:
        limit: Max in-flight jobs (literal or ``limit(*args)``)
        key_suffix: Partitions the pool, e.g. one pool per tenant
        ttl: Seconds a held slot survives without being released
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    limit: IntOption
    key_suffix: Callable[..., Any] | None = None
    ttl: int | None = Field(default=None, gt=0)


class ThresholdOptions(BaseModel):
    """Cap on admissions per time window.

    Attributes:
        limit: Max admissions per window (literal or ``limit(*args)``)
        period: Window length in seconds or as a ``timedelta``
        key_suffix: Partitions the window counter
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    limit: IntOption
    period: PeriodOption
    key_suffix: Callable[..., Any] | None = None

    @field_validator("period")
    @classmethod
    def _positive_period(cls, value: Any) -> Any:
        if isinstance(value, timedelta):
            value = value.total_seconds()
        if not callable(value) and value <= 0:
            raise ValueError("period must be positive")
        return value


class ThrottleOptions(BaseModel):
    """All constraints declared for one job class. Empty means never throttled."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    concurrency: ConcurrencyOptions | None = None
    threshold: ThresholdOptions | None = None

    @property
    def is_empty(self) -> bool:
        return self.concurrency is None and self.threshold is None


def parse_options(options: ThrottleOptions | Mapping[str, Any] | None = None, **kwargs: Any) -> ThrottleOptions:
    """Validate raw options into :class:`ThrottleOptions`.

    Raises:
        InvalidConfigError: Unknown keys, wrong types, non-positive period.
    """
    if isinstance(options, ThrottleOptions) and not kwargs:
        return options

    raw: dict[str, Any] = {}
    if isinstance(options, ThrottleOptions):
        raw.update(options.model_dump(exclude_none=True))
    elif options is not None:
        raw.update(options)
    raw.update(kwargs)

    try:
        return ThrottleOptions.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        key = ".".join(str(part) for part in first["loc"]) or "options"
        raise InvalidConfigError(key, first["msg"], cause=exc) from exc


__all__ = [
    "ConcurrencyOptions",
    "ThresholdOptions",
    "ThrottleOptions",
    "parse_options",
]
