"""
Canonical cache keys: endpoint path plus sorted, flattened query parameters.
"""
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _flatten(prefix: str, value: Any, out: List[Tuple[str, str]]) -> None:
    if value is None:
        return
    if isinstance(value, Mapping):
        for key, nested in value.items():
            _flatten(f"{prefix}.{key}", nested, out)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for nested in value:
            _flatten(prefix, nested, out)
    else:
        out.append((prefix, _format_value(value)))


def flatten_params(params: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """
    Flatten query parameters into sorted (name, value) pairs.

    - None values are dropped
    - nested mappings become dotted names ("filter.tier=S")
    - sequences become repeated names, values sorted
    """
    pairs: List[Tuple[str, str]] = []
    for key, value in (params or {}).items():
        _flatten(str(key), value, pairs)
    return sorted(pairs)


def make_cache_key(endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Generate cache key from endpoint and params.

    make_cache_key("groups/Sports", {"limit": 10}) -> "groups/Sports?limit=10"

    Names and values are percent-encoded, so a value containing "&" or "="
    cannot collide with a different parameter set.
    """
    endpoint = endpoint.strip("/")
    pairs = flatten_params(params)
    if not pairs:
        return endpoint
    query = "&".join(f"{quote(name, safe='')}={quote(value, safe='')}" for name, value in pairs)
    return f"{endpoint}?{query}"
