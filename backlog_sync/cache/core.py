"""
Core cache data structures.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from backlog_sync.timing import Cancellable


@dataclass
class CacheEntry:
    """
    A cached fetch result, trusted only while now < expires_at.
    """
    value: Any
    created_at: float
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        """Check if the entry can still be served."""
        return now < self.expires_at

    def age_seconds(self, now: float) -> float:
        """Seconds since the value was stored."""
        return now - self.created_at


@dataclass
class InFlightRequest:
    """Tracks a fetch that has been scheduled but has not settled yet."""
    future: asyncio.Future
    started_at: float
    waiter_count: int = 1
    # Set while the dispatch is still held by the coalescing window
    dispatch: Optional[Cancellable] = None
    dispatched: bool = False
    task: Optional[asyncio.Task] = None
    # Set when the key is invalidated before the fetch settles; the result is
    # still delivered to waiters but not cached
    invalidated: bool = False


@dataclass(frozen=True)
class CoalescerStats:
    """
    Snapshot of coalescer counters.

    total_requests, coalesced_requests and cache_hits only grow (until
    reset_stats); active_batches is the live number of in-flight keys.
    """
    total_requests: int = 0
    coalesced_requests: int = 0
    cache_hits: int = 0
    active_batches: int = 0

    @property
    def fresh_fetches(self) -> int:
        """Requests that reached the backend."""
        return self.total_requests - self.coalesced_requests - self.cache_hits

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary for JSON response."""
        return {
            "totalRequests": self.total_requests,
            "coalescedRequests": self.coalesced_requests,
            "cacheHits": self.cache_hits,
            "activeBatches": self.active_batches,
        }


@dataclass(frozen=True)
class CoalescerEfficiency:
    """Rates derived from CoalescerStats. Percentages are within [0, 100]."""
    coalescing_rate: float = 0.0
    cache_hit_rate: float = 0.0
    network_savings: int = 0

    @classmethod
    def from_stats(cls, stats: CoalescerStats) -> "CoalescerEfficiency":
        total = stats.total_requests
        if total <= 0:
            return cls()
        return cls(
            coalescing_rate=stats.coalesced_requests / total * 100,
            cache_hit_rate=stats.cache_hits / total * 100,
            network_savings=stats.coalesced_requests + stats.cache_hits,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "coalescingRate": round(self.coalescing_rate, 1),
            "cacheHitRate": round(self.cache_hit_rate, 1),
            "networkSavings": self.network_savings,
        }
