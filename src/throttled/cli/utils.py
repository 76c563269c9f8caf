"""
CLI utility helpers — consoles and ``module:attr`` loading.
"""

from __future__ import annotations

import importlib
from typing import Any

import typer
from rich.console import Console

from throttled.execution.registry import StrategyRegistry
from throttled.execution.throttler import Throttler

console = Console()
err_console = Console(stderr=True)


def load_object(path: str) -> Any:
    """Import ``package.module:attribute`` and return the attribute."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise typer.BadParameter(f"expected 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import {module_name!r}: {exc}") from exc

    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise typer.BadParameter(f"{module_name!r} has no attribute {attr!r}") from exc
    return obj


def load_throttler(path: str) -> Throttler:
    """Resolve ``path`` to a :class:`Throttler`.

    The target may be a ``Throttler``, a ``StrategyRegistry`` (wrapped in
    one), or a zero-argument factory returning either.
    """
    obj = load_object(path)
    if callable(obj) and not isinstance(obj, Throttler | StrategyRegistry):
        obj = obj()
    if isinstance(obj, StrategyRegistry):
        return Throttler(obj)
    if isinstance(obj, Throttler):
        return obj
    raise typer.BadParameter(f"{path!r} is neither a Throttler nor a StrategyRegistry")
