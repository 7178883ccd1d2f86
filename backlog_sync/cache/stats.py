"""
Read-only diagnostic view over a RequestCoalescer.
"""
import logging
from typing import Any, Dict

from .coalescer import RequestCoalescer

logger = logging.getLogger("cache.stats")


class StatsReporter:
    """
    Formats coalescer counters for monitoring views.

    Never mutates counters or cache; resetting and invalidation stay on the
    coalescer itself.
    """

    def __init__(self, coalescer: RequestCoalescer):
        self._coalescer = coalescer

    def snapshot(self) -> Dict[str, Any]:
        """Counters, derived rates and cache occupancy in one dict."""
        stats = self._coalescer.get_stats()
        efficiency = self._coalescer.get_efficiency()
        return {
            "stats": stats.to_dict(),
            "efficiency": efficiency.to_dict(),
            "report": {
                "coalescingRate": f"{efficiency.coalescing_rate:.1f}%",
                "cacheHitRate": f"{efficiency.cache_hit_rate:.1f}%",
                "networkSavings": f"{efficiency.network_savings} requests saved",
            },
            "freshFetches": stats.fresh_fetches,
            "entries": self._coalescer.cache_size,
            "activeKeys": self._coalescer.active_keys,
        }

    def log_summary(self) -> None:
        stats = self._coalescer.get_stats()
        efficiency = self._coalescer.get_efficiency()
        logger.info(
            f"Coalescer: {stats.total_requests} requests, "
            f"{stats.cache_hits} hits ({efficiency.cache_hit_rate:.1f}%), "
            f"{stats.coalesced_requests} coalesced ({efficiency.coalescing_rate:.1f}%), "
            f"{stats.active_batches} in flight"
        )
