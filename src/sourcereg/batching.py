"""Bounded-concurrency batch runner with a fixed pause between batches."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

log = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


async def run_batched(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R | None]],
    *,
    batch_size: int = 2,
    delay_ms: int = 500,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[R]:
    """Run ``worker`` over ``items`` ``batch_size`` at a time.

    Waits ``delay_ms`` between batches, never after the last one. Results
    keep input order. ``None`` results and worker exceptions are dropped;
    exceptions are logged.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    results: list[R] = []
    for start in range(0, len(items), batch_size):
        batch = items[start : start + batch_size]
        outcomes = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        for item, outcome in zip(batch, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                log.error("batch_item_failed", item=repr(item), error=str(outcome))
                continue
            if outcome is not None:
                results.append(outcome)
        if start + batch_size < len(items):
            await sleep(delay_ms / 1000)
    return results
