"""
REST client for the item-groups backend.

Blocking requests calls run in worker threads so the event loop stays free;
every method returns the decoded JSON body or raises NetworkError.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from backlog_sync.errors import NetworkError

logger = logging.getLogger("api_client")


class ItemGroupsClient:
    """
    Raw backend client. No caching, coalescing, retry or backoff.

    Usage:
        client = ItemGroupsClient("http://localhost:8000/api")
        groups = await client.get_groups_by_category("sports", limit=10)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._session.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make one HTTP call.

        Args:
            method: HTTP verb
            endpoint: Path relative to base_url
            params: Query parameters (None values dropped)
            json: JSON body

        Returns:
            Decoded JSON, or None for an empty body

        Raises:
            NetworkError: On transport failure or a non-2xx status
        """
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = self._session.request(
                method,
                url,
                params=clean_params or None,
                json=json,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            logger.warning(f"{method} {endpoint} failed with status {status}")
            raise NetworkError(f"{method} {endpoint} returned {status}", status_code=status) from e
        except requests.RequestException as e:
            logger.warning(f"{method} {endpoint} failed: {e}")
            raise NetworkError(f"{method} {endpoint} failed: {e}") from e

        if not response.content:
            return None
        return response.json()

    async def _call(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        return await asyncio.to_thread(self._request, method, endpoint, **kwargs)

    # ===== READS =====

    async def get_groups_by_category(
        self,
        category: str,
        subcategory: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        min_item_count: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """List groups of a category, filtered by the backend."""
        return await self._call(
            "GET",
            "groups",
            params={
                "category": category,
                "subcategory": subcategory,
                "search": search,
                "limit": limit,
                "min_item_count": min_item_count,
            },
        )

    async def get_group(self, group_id: str, include_items: bool = False) -> Dict[str, Any]:
        """Get one group, optionally with its items."""
        return await self._call(
            "GET",
            f"groups/{group_id}",
            params={"include_items": "true" if include_items else None},
        )

    async def get_group_items(self, group_id: str) -> List[Dict[str, Any]]:
        return await self._call("GET", f"groups/{group_id}/items")

    # ===== WRITES =====

    async def add_item_to_group(self, group_id: str, item: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("POST", f"groups/{group_id}/items", json=item)

    async def remove_item_from_group(self, group_id: str, item_id: str) -> Any:
        return await self._call("DELETE", f"groups/{group_id}/items/{item_id}")

    async def update_item_in_group(
        self, group_id: str, item_id: str, updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        return await self._call("PATCH", f"groups/{group_id}/items/{item_id}", json=updates)

    # ===== HEALTH =====

    async def ping(self, path: str = "health") -> bool:
        """Connectivity probe: True if the backend answers 2xx."""
        try:
            await self._call("GET", path)
        except NetworkError:
            return False
        return True
