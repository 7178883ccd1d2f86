"""
Item-groups API with request coalescing and TTL caching on reads.

Exposes the same call signatures as ItemGroupsClient. Writes go straight to
the backend and invalidate the cached reads they make stale.
"""
import logging
from typing import Any, Dict, List, Optional

from backlog_sync.api_client import ItemGroupsClient
from backlog_sync.cache import (
    CacheTTL,
    Fetcher,
    RequestCoalescer,
    get_preset_for_endpoint,
    get_ttl_for_preset,
    make_cache_key,
)

logger = logging.getLogger("coalesced_api")


class CoalescedItemGroupsAPI:
    """
    Binds ItemGroupsClient reads to a RequestCoalescer.

    Keys are built from the endpoint path and its sorted parameters, so
    get_groups_by_category("sports", limit=10) and an identical call with
    keyword arguments in another order share one backend request.
    """

    def __init__(
        self,
        client: ItemGroupsClient,
        coalescer: RequestCoalescer,
        ttl_overrides: Optional[Dict[CacheTTL, float]] = None,
    ):
        self._client = client
        self._coalescer = coalescer
        self._ttl_overrides = ttl_overrides

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    async def _read(
        self,
        endpoint: str,
        params: Dict[str, Any],
        fetch: Fetcher,
        force_refresh: bool,
    ) -> Any:
        key = make_cache_key(endpoint, params)
        ttl = get_ttl_for_preset(get_preset_for_endpoint(endpoint, params), self._ttl_overrides)
        return await self._coalescer.coalesce(key, fetch, ttl=ttl, force_refresh=force_refresh)

    # ===== READS =====

    async def get_groups_by_category(
        self,
        category: str,
        subcategory: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        min_item_count: Optional[int] = None,
        force_refresh: bool = False,
    ) -> List[Dict[str, Any]]:
        params = {
            "category": category,
            "subcategory": subcategory,
            "search": search,
            "limit": limit,
            "min_item_count": min_item_count,
        }
        return await self._read(
            "groups",
            params,
            lambda: self._client.get_groups_by_category(
                category,
                subcategory=subcategory,
                search=search,
                limit=limit,
                min_item_count=min_item_count,
            ),
            force_refresh,
        )

    async def get_group(
        self,
        group_id: str,
        include_items: bool = False,
        force_refresh: bool = False,
    ) -> Dict[str, Any]:
        return await self._read(
            f"groups/{group_id}",
            {"include_items": include_items or None},
            lambda: self._client.get_group(group_id, include_items=include_items),
            force_refresh,
        )

    async def get_group_items(
        self, group_id: str, force_refresh: bool = False
    ) -> List[Dict[str, Any]]:
        return await self._read(
            f"groups/{group_id}/items",
            {},
            lambda: self._client.get_group_items(group_id),
            force_refresh,
        )

    # ===== WRITES =====

    async def add_item_to_group(self, group_id: str, item: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._client.add_item_to_group(group_id, item)
        self.invalidate_group(group_id)
        return result

    async def remove_item_from_group(self, group_id: str, item_id: str) -> Any:
        result = await self._client.remove_item_from_group(group_id, item_id)
        self.invalidate_group(group_id)
        return result

    async def update_item_in_group(
        self, group_id: str, item_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        result = await self._client.update_item_in_group(group_id, item_id, updates)
        self.invalidate_group(group_id)
        return result

    def invalidate_group(self, group_id: str) -> int:
        """
        Drop cached reads affected by a write to one group.

        Covers the group itself, its parameterised and nested reads, and every
        category listing (item counts change).

        Returns:
            Number of entries invalidated
        """
        base = make_cache_key(f"groups/{group_id}")
        count = int(self._coalescer.invalidate_key(base))
        count += self._coalescer.invalidate_cache(f"{base}?")
        count += self._coalescer.invalidate_cache(f"{base}/")
        count += int(self._coalescer.invalidate_key("groups"))
        count += self._coalescer.invalidate_cache("groups?")
        logger.debug(f"Invalidated {count} cached reads for group {group_id}")
        return count
