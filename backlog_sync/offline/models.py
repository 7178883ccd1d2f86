"""
Data models for the offline mutation queue.

Snapshots are frozen so the shared store can only change by whole-value
replacement.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from backlog_sync.errors import ReplayError


class ChangeType(Enum):
    """Kinds of buffered writes."""
    ADD = "add"
    REMOVE = "remove"
    UPDATE = "update"


@dataclass(frozen=True)
class PendingChange:
    """A write requested while offline, waiting for replay."""
    type: ChangeType
    group_id: str
    timestamp: float  # clock seconds, orders replay; not wall time
    item_id: Optional[str] = None
    item: Optional[Dict[str, Any]] = None  # full item for add, changed fields for update
    attempts: int = 0
    last_error: Optional[str] = None
    queued_at: Optional[datetime] = None

    def describe(self) -> str:
        """Short label for logs: 'add item 42 -> group sports-1'."""
        target = f"item {self.item_id}" if self.item_id else "item"
        return f"{self.type.value} {target} -> group {self.group_id}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "type": self.type.value,
            "groupId": self.group_id,
            "itemId": self.item_id,
            "item": self.item,
            "timestamp": self.timestamp,
            "queuedAt": self.queued_at.isoformat() if self.queued_at else None,
            "attempts": self.attempts,
            "lastError": self.last_error,
        }


@dataclass(frozen=True)
class OfflineState:
    """Offline slice of the shared state container."""
    is_offline_mode: bool = False
    pending_changes: Tuple[PendingChange, ...] = ()
    # Changes abandoned after exhausting their replay attempts
    dropped_changes: Tuple[PendingChange, ...] = ()
    last_sync_at: Optional[datetime] = None

    @property
    def has_pending(self) -> bool:
        return len(self.pending_changes) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isOfflineMode": self.is_offline_mode,
            "pendingChanges": [change.to_dict() for change in self.pending_changes],
            "droppedChanges": [change.to_dict() for change in self.dropped_changes],
            "lastSyncAt": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }


@dataclass
class MutationOutcome:
    """Result of a write: either buffered for replay or applied by the backend."""
    queued: bool
    change: Optional[PendingChange] = None
    result: Any = None


@dataclass
class ReplayReport:
    """Summary of one replay pass."""
    ran: bool = False
    attempted: int = 0
    succeeded: int = 0
    retained: int = 0
    dropped: int = 0
    # True when connectivity dropped mid-pass and the rest stayed queued
    interrupted: bool = False
    errors: List[ReplayError] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ran": self.ran,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retained": self.retained,
            "dropped": self.dropped,
            "interrupted": self.interrupted,
            "errors": [str(error) for error in self.errors],
        }


class MutationBackend(Protocol):
    """Write operations the queue dispatches to."""

    async def add_item_to_group(self, group_id: str, item: Dict[str, Any]) -> Any:
        ...

    async def remove_item_from_group(self, group_id: str, item_id: str) -> Any:
        ...

    async def update_item_in_group(
        self, group_id: str, item_id: str, updates: Dict[str, Any]
    ) -> Any:
        ...
