"""
Bounded resource pool for outbound model calls.

One limiter is created per call path (generation, grading) by whoever wires the
pipeline together and handed to the ModelGateway, so every caller sharing a
gateway shares the same bound.
"""

import asyncio


class ConcurrencyLimiter:
    """asyncio.Semaphore wrapper that also records in-flight and peak usage."""

    def __init__(self, max_concurrent: int, name: str = "model-calls"):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.name = name
        self.max_concurrent = max_concurrent
        self.in_flight = 0
        self.peak = 0
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.in_flight -= 1
        self._semaphore.release()

    def __repr__(self) -> str:
        return f"ConcurrencyLimiter(name={self.name!r}, max_concurrent={self.max_concurrent}, in_flight={self.in_flight})"
