"""
Single-flight guard: concurrent callers of the same key share one in-flight call.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class SingleFlight:
    """Maps an operation key to its in-progress future."""

    def __init__(self):
        self._inflight: Dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def wait(self, key: str) -> Any:
        """Wait for the outstanding call under ``key``, if any."""
        future = self._inflight.get(key)
        if future is None:
            return None
        return await asyncio.shield(future)

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` unless a call under ``key`` is outstanding, in which case join it."""
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug(f"Joining in-flight '{key}'")
            return await asyncio.shield(existing)

        future = asyncio.ensure_future(fn())
        self._inflight[key] = future
        # cleared once the call settles, success or failure
        future.add_done_callback(lambda f: self._forget(key, f))
        return await asyncio.shield(future)

    def _forget(self, key: str, future: asyncio.Future):
        if self._inflight.get(key) is future:
            del self._inflight[key]
