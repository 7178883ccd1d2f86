"""
Request coalescing to prevent duplicate backend calls.

When multiple concurrent callers ask for the same data, only one backend
call is made and all callers share the result. Successful results are kept
for a TTL so later callers are served without a round-trip.
"""
import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from backlog_sync.errors import ConfigurationError
from backlog_sync.timing import Clock, SystemClock, validate_duration

from .core import CacheEntry, CoalescerEfficiency, CoalescerStats, InFlightRequest

logger = logging.getLogger("cache.coalescer")

Fetcher = Callable[[], Awaitable[Any]]


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one backend call.

    Pattern:
    - A live cache entry answers immediately (cache hit)
    - Otherwise the first request for a key registers an in-flight future
      and schedules the fetch, held for `debounce` seconds
    - Requests for the same key arriving before it settles await that future
    - On success the value is cached for the TTL; on failure nothing is
      cached and every waiter receives the same exception

    Usage:
        coalescer = RequestCoalescer(cache_ttl=300)
        groups = await coalescer.coalesce(
            "groups?category=sports&limit=10",
            lambda: client.get_groups_by_category("sports", limit=10),
        )
    """

    def __init__(
        self,
        cache_ttl: float = 300.0,
        debounce: float = 0.0,
        enable_logging: bool = False,
        max_entries: int = 200,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the coalescer.

        Args:
            cache_ttl: Seconds a successful result is served from cache
            debounce: Seconds the first request for a key is held before dispatch
            enable_logging: Log per-request decisions at INFO instead of DEBUG
            max_entries: Cache capacity; least recently used entries are evicted

        Raises:
            ConfigurationError: If any value is out of range
        """
        self._cache_ttl = validate_duration("cache_ttl", cache_ttl)
        self._debounce = validate_duration("debounce", debounce)
        if isinstance(max_entries, bool) or not isinstance(max_entries, int) or max_entries < 1:
            raise ConfigurationError(f"max_entries must be a positive integer, got {max_entries!r}")
        self._max_entries = max_entries
        self._enable_logging = enable_logging
        self._clock = clock or SystemClock()

        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._in_flight: Dict[str, InFlightRequest] = {}

        self._total_requests = 0
        self._coalesced_requests = 0
        self._cache_hits = 0

    @property
    def cache_ttl(self) -> float:
        return self._cache_ttl

    @property
    def debounce(self) -> float:
        return self._debounce

    async def coalesce(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[float] = None,
        force_refresh: bool = False,
    ) -> Any:
        """
        Serve from cache, join an in-flight request, or start a new one.

        Args:
            key: Canonical cache key for this request
            fetcher: Zero-argument callable returning an awaitable
            ttl: Per-call TTL override in seconds
            force_refresh: Skip the cache lookup (the fetch is still coalesced)

        Returns:
            The value (shared among all concurrent callers)

        Raises:
            Exception: Any error from fetcher is propagated to every waiter
        """
        if ttl is not None:
            ttl = validate_duration("ttl", ttl)

        self._total_requests += 1

        if not force_refresh:
            entry = self._lookup(key)
            if entry is not None:
                self._cache_hits += 1
                self._log(
                    f"CACHE HIT: {key} [age={entry.age_seconds(self._clock.now()):.1f}s]"
                )
                return entry.value

        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            # Join existing request
            in_flight.waiter_count += 1
            self._coalesced_requests += 1
            self._log(f"Coalescing request for {key} (waiters: {in_flight.waiter_count})")
            return await asyncio.shield(in_flight.future)

        in_flight = self._start(key, fetcher, ttl)
        return await asyncio.shield(in_flight.future)

    def _start(self, key: str, fetcher: Fetcher, ttl: Optional[float]) -> InFlightRequest:
        """Register the in-flight entry and schedule the fetch."""
        loop = asyncio.get_running_loop()
        in_flight = InFlightRequest(
            future=loop.create_future(),
            started_at=self._clock.now(),
        )
        self._in_flight[key] = in_flight

        def dispatch() -> None:
            in_flight.dispatch = None
            in_flight.dispatched = True
            in_flight.task = loop.create_task(self._run(key, fetcher, ttl, in_flight))

        if self._debounce > 0:
            self._log(f"Holding fetch for {key} ({self._debounce * 1000:.0f}ms window)")
            in_flight.dispatch = self._clock.call_later(self._debounce, dispatch)
        else:
            self._log(f"Initiating fetch for {key}")
            dispatch()
        return in_flight

    async def _run(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[float],
        in_flight: InFlightRequest,
    ) -> None:
        future = in_flight.future
        try:
            value = await fetcher()
        except asyncio.CancelledError:
            self._release(key, in_flight)
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            self._release(key, in_flight)
            logger.warning(f"Fetch failed for {key}: {e}")
            if not future.done():
                future.set_exception(e)
                # Mark retrieved; waiters that are still awaiting get it anyway
                future.exception()
            return

        if in_flight.invalidated:
            self._log(f"Not caching {key}: invalidated while in flight")
        else:
            self._store(key, value, self._cache_ttl if ttl is None else ttl)
        self._release(key, in_flight)
        if not future.done():
            future.set_result(value)

    def _release(self, key: str, in_flight: InFlightRequest) -> None:
        if self._in_flight.get(key) is in_flight:
            del self._in_flight[key]

    def _lookup(self, key: str) -> Optional[CacheEntry]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock.now()):
            del self._cache[key]
            self._log(f"CACHE EXPIRED: {key}")
            return None
        self._cache.move_to_end(key)
        return entry

    def _store(self, key: str, value: Any, ttl: float) -> None:
        """Store a value in cache, evicting the least recently used entries."""
        if ttl <= 0:
            return
        self._cache.pop(key, None)
        while len(self._cache) >= self._max_entries:
            evicted, _ = self._cache.popitem(last=False)
            self._log(f"Evicted LRU entry: {evicted}")
        now = self._clock.now()
        self._cache[key] = CacheEntry(value=value, created_at=now, expires_at=now + ttl)
        self._log(f"Cached: {key} (TTL: {ttl:.0f}s)")

    def has(self, key: str) -> bool:
        """Check if a key is cached and not expired. Does not touch counters."""
        entry = self._cache.get(key)
        if entry is None:
            return False
        if not entry.is_fresh(self._clock.now()):
            del self._cache[key]
            return False
        return True

    def keys(self) -> List[str]:
        """Keys of all unexpired cache entries."""
        now = self._clock.now()
        return [key for key, entry in self._cache.items() if entry.is_fresh(now)]

    @property
    def cache_size(self) -> int:
        """Number of stored entries, including expired ones not yet dropped."""
        return len(self._cache)

    @property
    def active_keys(self) -> List[str]:
        """Keys with a request currently in flight."""
        return list(self._in_flight.keys())

    async def prefetch(self, key: str, fetcher: Fetcher, ttl: Optional[float] = None) -> bool:
        """
        Warm the cache for a key.

        Fetch errors are logged and swallowed.

        Returns:
            True if a value was fetched or joined, False if skipped or failed
        """
        if self.has(key):
            self._log(f"Skip prefetch, already cached: {key}")
            return False
        try:
            await self.coalesce(key, fetcher, ttl=ttl)
        except Exception as e:
            logger.warning(f"Prefetch failed for {key}: {e}")
            return False
        return True

    def invalidate_cache(self, prefix: Optional[str] = None) -> int:
        """
        Remove cache entries, optionally only those whose key starts with prefix.

        In-flight requests still settle and reach their waiters, but a
        matching fetch that was in flight is not cached when it settles.

        Returns:
            Number of entries invalidated
        """
        for key, in_flight in self._in_flight.items():
            if prefix is None or key.startswith(prefix):
                in_flight.invalidated = True

        if prefix is None:
            count = len(self._cache)
            self._cache.clear()
            if count:
                logger.info(f"Invalidated all {count} cache entries")
            return count

        to_delete = [key for key in self._cache if key.startswith(prefix)]
        for key in to_delete:
            del self._cache[key]
        if to_delete:
            logger.info(f"Invalidated {len(to_delete)} entries with prefix '{prefix}'")
        return len(to_delete)

    def invalidate_key(self, key: str) -> bool:
        """
        Remove exactly one cache entry.

        An in-flight fetch for the key is not cached when it settles.

        Returns:
            True if entry was found and removed
        """
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            in_flight.invalidated = True
        if self._cache.pop(key, None) is None:
            return False
        logger.info(f"Invalidated cache: {key}")
        return True

    def get_stats(self) -> CoalescerStats:
        """Get coalescer statistics."""
        return CoalescerStats(
            total_requests=self._total_requests,
            coalesced_requests=self._coalesced_requests,
            cache_hits=self._cache_hits,
            active_batches=len(self._in_flight),
        )

    def get_efficiency(self) -> CoalescerEfficiency:
        """Get rates derived from the current counters."""
        return CoalescerEfficiency.from_stats(self.get_stats())

    def reset_stats(self) -> None:
        """Zero the counters. Cache and in-flight requests are untouched."""
        self._total_requests = 0
        self._coalesced_requests = 0
        self._cache_hits = 0
        logger.info("Coalescer stats reset")

    def shutdown(self) -> int:
        """
        Cancel fetches still held by the coalescing window.

        Dispatched fetches run to completion.

        Returns:
            Number of held fetches cancelled
        """
        cancelled = 0
        for key, in_flight in list(self._in_flight.items()):
            if in_flight.dispatched:
                continue
            if in_flight.dispatch is not None:
                in_flight.dispatch.cancel()
            del self._in_flight[key]
            in_flight.future.cancel()
            cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} held fetches")
        return cancelled

    def _log(self, message: str) -> None:
        logger.log(logging.INFO if self._enable_logging else logging.DEBUG, message)
