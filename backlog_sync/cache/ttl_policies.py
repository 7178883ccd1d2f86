"""
TTL presets and endpoint-to-preset mapping.
"""
from enum import Enum
from typing import Any, Dict, Optional


class CacheTTL(Enum):
    """TTL presets for data with different change rates."""
    SHORT = "short"          # rapidly changing data
    MEDIUM = "medium"        # frequently changing
    STANDARD = "standard"    # default
    LONG = "long"            # rarely changing
    STATIC = "static"        # reference data


# TTL configuration by preset (in seconds)
TTL_CONFIG: Dict[CacheTTL, float] = {
    CacheTTL.SHORT: 30,          # 30 seconds
    CacheTTL.MEDIUM: 120,        # 2 minutes
    CacheTTL.STANDARD: 300,      # 5 minutes
    CacheTTL.LONG: 900,          # 15 minutes
    CacheTTL.STATIC: 3600,       # 1 hour
}


def get_ttl_for_preset(
    preset: CacheTTL,
    overrides: Optional[Dict[CacheTTL, float]] = None,
) -> float:
    """
    Get TTL seconds for a preset.

    Args:
        preset: The TTL preset
        overrides: Optional per-preset replacements (e.g. from settings)

    Returns:
        TTL in seconds
    """
    if overrides and preset in overrides:
        return overrides[preset]
    return TTL_CONFIG.get(preset, TTL_CONFIG[CacheTTL.STANDARD])


def get_preset_for_endpoint(endpoint: str, params: Dict[str, Any]) -> CacheTTL:
    """
    Determine the TTL preset for an endpoint + params combination.

    Args:
        endpoint: Backend path without leading slash (e.g. "groups", "groups/abc")
        params: Query parameters

    Returns:
        CacheTTL preset for caching behavior
    """
    parts = endpoint.strip("/").split("/")

    if parts[0] != "groups":
        return CacheTTL.STANDARD

    # Category listings
    if len(parts) == 1:
        if params.get("search"):
            # Search results
            return CacheTTL.SHORT
        return CacheTTL.MEDIUM

    # Items of one group - edited by users, keep short
    if len(parts) == 3 and parts[2] == "items":
        return CacheTTL.SHORT

    # Single group
    if params.get("include_items"):
        return CacheTTL.MEDIUM
    # Group metadata only - very stable
    return CacheTTL.LONG
