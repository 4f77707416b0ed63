"""
Single-flight request deduplication

Concurrent identical reads against the scheduling API share one in-flight
call. The entry is dropped as soon as the call settles, so nothing is cached
beyond the lifetime of the request itself. Writes never go through here.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def cache_key(endpoint: str, params: Optional[dict] = None) -> str:
    """Canonical key: endpoint plus parameters sorted by name, as k=v joined by &"""
    if not params:
        return endpoint
    parts = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] is not None)
    return f"{endpoint}?{parts}" if parts else endpoint


class RequestDeduplicator:
    """Per-process map of in-flight calls keyed by cache_key()"""

    def __init__(self):
        self._in_flight: dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)

    async def run(self, key: str, fetcher: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``fetcher`` unless an identical call is already in flight.

        Attached callers receive the same result, or the same exception when
        the shared call fails.
        """
        existing = self._in_flight.get(key)
        if existing is not None:
            logger.debug(f"🔁 Joining in-flight request: {key}")
            # shield so one cancelled waiter does not cancel the shared call
            return await asyncio.shield(existing)

        future = asyncio.ensure_future(fetcher())
        self._in_flight[key] = future
        try:
            return await asyncio.shield(future)
        finally:
            if future.done():
                self._in_flight.pop(key, None)
            else:
                future.add_done_callback(lambda _f: self._in_flight.pop(key, None))


# Process-wide instance used by the application's Hapio client
default_deduplicator = RequestDeduplicator()
