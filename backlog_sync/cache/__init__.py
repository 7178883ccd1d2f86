"""
Request coalescing cache with TTL presets and diagnostics.
"""
from .core import CacheEntry, CoalescerEfficiency, CoalescerStats, InFlightRequest
from .ttl_policies import (
    TTL_CONFIG,
    CacheTTL,
    get_preset_for_endpoint,
    get_ttl_for_preset,
)
from .keys import flatten_params, make_cache_key
from .coalescer import Fetcher, RequestCoalescer
from .stats import StatsReporter

__all__ = [
    # Core types
    "CacheEntry",
    "CoalescerEfficiency",
    "CoalescerStats",
    "InFlightRequest",
    # TTL policies
    "TTL_CONFIG",
    "CacheTTL",
    "get_preset_for_endpoint",
    "get_ttl_for_preset",
    # Keys
    "flatten_params",
    "make_cache_key",
    # Coalescing
    "Fetcher",
    "RequestCoalescer",
    # Diagnostics
    "StatsReporter",
]
