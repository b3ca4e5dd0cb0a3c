"""
Featur: Best-effort operations

Some writes are bookkeeping that must never fail the action that triggered
them (e.g. flagging a match as messaged after a message was stored).  Such
coroutines are wrapped with ``@best_effort("name")``: any exception is logged
as ``best_effort_failed`` with the operation name and the call returns
``None``.
"""

from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

logger = structlog.get_logger("featur.best_effort")

T = TypeVar("T")


def best_effort(
    operation: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[Optional[T]]]]:
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[Optional[T]]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Optional[T]:
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                logger.warning(
                    "best_effort_failed",
                    operation=operation,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return None

        wrapper.best_effort_operation = operation  # type: ignore[attr-defined]
        return wrapper

    return decorator
