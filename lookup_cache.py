"""
Time-boxed memoizing cache for external lookups (autocomplete, place
details, geocoding).

Every lookup goes cache-first:
- A fresh entry (younger than the TTL) is returned with no network activity.
- On a miss or a stale entry the fetch runs, bounded by a timeout. Success
  overwrites the entry.
- On failure (including timeout) a stale entry, if one exists, is served
  with a warning instead of raising. With no entry at all the error
  propagates to the caller.

The cache is unbounded and lives as long as its owner. Construct one per
scope (process, session, test) and pass it to the clients that need it.
Concurrent writers racing on one key are harmless: last write wins and
both values are equally fresh.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from route_trace import get_trace

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    created_at: float


def normalize_key(key: str) -> str:
    return key.strip().lower()


class LookupCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at < self.ttl_seconds

    def peek(self, key: str, normalize: bool = True) -> Optional[CacheEntry]:
        """Return the entry for ``key`` regardless of freshness, or None."""
        return self._entries.get(normalize_key(key) if normalize else key)

    def clear(self):
        self._entries.clear()

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        normalize: bool = True,
    ) -> T:
        """Return the cached value for ``key`` or fetch, store and return it.

        Args:
            key: Request signature, e.g. "autocomplete:main st".
            fetch_fn: Zero-argument coroutine function performing the lookup.
            normalize: Trim and lower-case the key. Disable for identifiers
                that are case-sensitive (place ids).

        Raises:
            Whatever ``fetch_fn`` raises (or TimeoutError) when no entry,
            fresh or stale, exists for ``key``.
        """
        if normalize:
            key = normalize_key(key)

        cached = self._entries.get(key)
        if cached is not None and self.is_fresh(cached):
            trace = get_trace()
            if trace:
                trace.record_api_call(
                    service="lookup_cache",
                    endpoint=key.split(":", 1)[0],
                    elapsed_ms=0,
                    status_code=200,
                    provider_status="cache_hit",
                )
            return cached.value

        try:
            if self.timeout_seconds is None:
                value = await fetch_fn()
            else:
                value = await asyncio.wait_for(fetch_fn(), timeout=self.timeout_seconds)
        except Exception as exc:
            return self._stale_fallback(key, cached, exc)

        self._entries[key] = CacheEntry(value=value, created_at=self._clock())
        return value

    def _stale_fallback(self, key: str, cached: Optional[CacheEntry], original_exc: Exception) -> Any:
        """Serve the stale entry after a failed refresh, else re-raise."""
        if cached is None:
            raise original_exc
        logger.warning(
            "Lookup failed for %s (%s: %s); serving stale entry from %.0fs ago",
            key,
            type(original_exc).__name__,
            original_exc,
            self._clock() - cached.created_at,
        )
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service="lookup_cache",
                endpoint=key.split(":", 1)[0],
                elapsed_ms=0,
                status_code=0,
                provider_status="stale_cache",
            )
        return cached.value
