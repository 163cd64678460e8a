"""SafePath - shared in-memory route cache with TTL"""

import asyncio
import hashlib
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from ..models.domain import Coordinate

logger = logging.getLogger(__name__)


def route_cache_key(
    origin: Coordinate,
    destination: Coordinate,
    avoid_polygons: Sequence[Sequence[Coordinate]] = (),
) -> str:
    """Origin/destination rounded to ~10 m plus a hash of the avoidance hint"""
    avoid_hash = "none"
    if avoid_polygons:
        raw = "|".join(
            ";".join(f"{c.latitude:.5f},{c.longitude:.5f}" for c in polygon)
            for polygon in avoid_polygons
        )
        avoid_hash = hashlib.sha1(raw.encode()).hexdigest()[:12]
    return (
        f"{origin.latitude:.4f},{origin.longitude:.4f}"
        f"->{destination.latitude:.4f},{destination.longitude:.4f}"
        f"#{avoid_hash}"
    )


class RouteCache:
    """Per-key TTL cache with max-size eviction, shared across sessions.

    Concurrent misses on one key share a single fetch.
    """

    def __init__(self, ttl_seconds: int = 900, max_size: int = 500):
        self._store: Dict[str, Tuple[Any, float]] = {}
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}
        self._ttl = ttl_seconds
        self._max_size = max_size

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() > expires_at:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None):
        if len(self._store) >= self._max_size and key not in self._store:
            self.evict_expired()
            # Still full: drop the earliest-expiring entries
            while len(self._store) >= self._max_size:
                oldest_key = min(self._store, key=lambda k: self._store[k][1])
                del self._store[oldest_key]
        self._store[key] = (value, time.monotonic() + (ttl or self._ttl))

    def evict_expired(self):
        now = time.monotonic()
        expired = [k for k, (_, exp) in self._store.items() if now > exp]
        for k in expired:
            del self._store[k]

    def clear(self):
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Route cache hit for {key}")
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so a failure nobody else awaited is not logged as lost
            future.exception()
            raise
        else:
            self.set(key, value)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
