"""Cooperative yield points for long offline renders."""
from __future__ import annotations

import asyncio


class YieldPoint:
    """Hand control back to the event loop on every ``every``-th tick.

    Offline renders run on the host's event loop; awaiting :meth:`tick` inside
    a work loop keeps other tasks responsive without splitting the work
    across threads.
    """

    def __init__(self, every: int = 1) -> None:
        if every < 1:
            raise ValueError("YieldPoint interval must be at least 1")
        self.every = every
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    async def tick(self) -> bool:
        """Count one unit of work, yielding when the interval is reached.

        Returns ``True`` when control was yielded.
        """

        yielded = self._count % self.every == 0
        self._count += 1
        if yielded:
            await asyncio.sleep(0)
        return yielded


async def yield_now() -> None:
    """Yield once, used between pipeline stages."""

    await asyncio.sleep(0)


__all__ = ["YieldPoint", "yield_now"]
