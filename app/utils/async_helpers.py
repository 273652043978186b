"""
Small asyncio helpers shared by the background jobs.
"""

import asyncio
from collections.abc import Awaitable, Iterable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Settled(Generic[T]):
    """Outcome of one awaitable: a value or the exception it raised."""

    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle_all(awaitables: Iterable[Awaitable[T]]) -> list[Settled[T]]:
    """
    Wait for every awaitable and report each outcome independently.

    Never fail-fast: one failure does not cancel or hide the others. Results
    are in input order. Cancellation of the caller still propagates.
    """
    outcomes = await asyncio.gather(*awaitables, return_exceptions=True)

    settled: list[Settled[T]] = []
    for outcome in outcomes:
        if isinstance(outcome, Exception):
            settled.append(Settled(error=outcome))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            settled.append(Settled(value=outcome))
    return settled


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive batches of at most ``size``."""
    if size < 1:
        raise ValueError(f"Batch size must be at least 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
