"""Run units of work in bounded concurrent groups with pacing between groups."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")


async def run_in_groups(
    units: Sequence[T],
    worker: Callable[[T], Awaitable[Any]],
    *,
    group_size: int,
    delay: float = 0.0,
    unit_timeout: float | None = None,
    abort_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[Any]:
    """Apply ``worker`` to every unit, ``group_size`` at a time.

    Results come back in input order. A unit that raises (or exceeds
    ``unit_timeout``, as ``asyncio.TimeoutError``) leaves its exception in
    its slot; the other units are unaffected. An exception matching
    ``abort_on`` is re-raised once its group finishes and no further group
    is started.
    """
    group_size = max(1, group_size)
    results: list[Any] = []

    async def _guarded(unit: T):
        if unit_timeout:
            return await asyncio.wait_for(worker(unit), timeout=unit_timeout)
        return await worker(unit)

    for start in range(0, len(units), group_size):
        if start and delay > 0:
            await sleep(delay)
        group = units[start:start + group_size]
        outcome = await asyncio.gather(*(_guarded(u) for u in group), return_exceptions=True)
        if abort_on:
            for r in outcome:
                if isinstance(r, abort_on):
                    raise r
        results.extend(outcome)
    return results
