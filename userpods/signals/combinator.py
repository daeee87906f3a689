"""AND-aggregation of readiness signals."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from userpods.signals.readiness import ReadinessSignal


async def receive_all(signals: Iterable[ReadinessSignal]) -> bool:
    """Wait for every signal and return the logical AND of their values.

    The inputs are awaited concurrently; the call returns once the slowest
    has resolved. An empty input is vacuously ``True``.
    """
    pending = list(signals)
    if not pending:
        return True
    results = await asyncio.gather(*(s.receive() for s in pending))
    return all(results)


async def combine(signals: Iterable[ReadinessSignal], aggregate: ReadinessSignal) -> bool:
    """Publish :func:`receive_all` of ``signals`` into ``aggregate``.

    Returns the combined value. If ``aggregate`` was already resolved (for
    example by its own timeout) the combined value is discarded there, but is
    still returned to the caller.
    """
    outcome = await receive_all(signals)
    aggregate.send(outcome)
    return outcome
