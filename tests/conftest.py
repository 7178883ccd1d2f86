"""
Shared fixtures: fake backend/client and a manual clock.
"""
import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from backlog_sync.errors import NetworkError
from backlog_sync.offline import OfflineState
from backlog_sync.state import StateStore
from backlog_sync.timing import ManualClock


class FakeBackend:
    """
    Records write calls in order.

    Writes whose item_id is in fail_items raise NetworkError; the set can be
    changed between replays to simulate a backend that recovers.
    """

    def __init__(self, fail_items: Optional[Set[str]] = None, delay: float = 0.0):
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.fail_items = set(fail_items or ())
        self.delay = delay

    async def _record(self, op: str, group_id: str, item_id: Optional[str]) -> Dict[str, Any]:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((op, group_id, item_id))
        if item_id in self.fail_items:
            raise NetworkError(f"{op} {item_id} rejected", status_code=500)
        return {"ok": True, "op": op, "groupId": group_id, "itemId": item_id}

    async def add_item_to_group(self, group_id: str, item: Dict[str, Any]) -> Any:
        return await self._record("add", group_id, item.get("id"))

    async def remove_item_from_group(self, group_id: str, item_id: str) -> Any:
        return await self._record("remove", group_id, item_id)

    async def update_item_in_group(
        self, group_id: str, item_id: str, updates: Dict[str, Any]
    ) -> Any:
        return await self._record("update", group_id, item_id)

    @property
    def item_ids(self) -> List[Optional[str]]:
        return [item_id for _, _, item_id in self.calls]


class FakeItemGroupsClient(FakeBackend):
    """Stands in for ItemGroupsClient: counts reads, answers canned data."""

    def __init__(self, delay: float = 0.0, reachable: bool = True):
        super().__init__(delay=delay)
        self.reads: List[Tuple[str, Any]] = []
        self.fail_reads = False
        self.reachable = reachable
        self.closed = False

    async def _read(self, name: str, args: Any, value: Any) -> Any:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.reads.append((name, args))
        if self.fail_reads:
            raise NetworkError(f"{name} unavailable", status_code=503)
        return value

    async def get_groups_by_category(
        self,
        category: str,
        subcategory: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        min_item_count: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._read(
            "groups",
            (category, subcategory, search, limit, min_item_count),
            [{"id": "g1", "category": category, "itemCount": 2}],
        )

    async def get_group(self, group_id: str, include_items: bool = False) -> Dict[str, Any]:
        group = {"id": group_id, "name": f"Group {group_id}"}
        if include_items:
            group["items"] = [{"id": "i1"}]
        return await self._read("group", (group_id, include_items), group)

    async def get_group_items(self, group_id: str) -> List[Dict[str, Any]]:
        return await self._read("items", (group_id,), [{"id": "i1"}, {"id": "i2"}])

    async def ping(self, path: str = "health") -> bool:
        return self.reachable

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return StateStore(OfflineState())


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def fake_client():
    return FakeItemGroupsClient()
