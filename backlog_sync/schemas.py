"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel
from typing import Any, Dict, List, Literal, Optional


# ===== ITEM SCHEMAS =====

class ItemCreate(BaseModel):
    """Item to add to a group. Fields beyond these are passed through."""
    id: Optional[str] = None
    name: Optional[str] = None

    class Config:
        extra = "allow"


class ItemUpdate(BaseModel):
    """Changed fields of an item. Only fields that were sent are forwarded."""
    name: Optional[str] = None

    class Config:
        extra = "allow"


class MutationResponse(BaseModel):
    """Result of a write: applied now, or queued for replay"""
    queued: bool
    change: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None


# ===== OFFLINE SCHEMAS =====

class OfflineStatus(BaseModel):
    """Offline slice of shared state"""
    isOfflineMode: bool
    pendingChanges: List[Dict[str, Any]]
    droppedChanges: List[Dict[str, Any]]
    lastSyncAt: Optional[str] = None
    isReplaying: bool = False


class RetryDroppedResponse(BaseModel):
    """Dropped changes moved back to the buffer"""
    requeued: int
    report: Dict[str, Any]


class SyncResponse(BaseModel):
    """Outcome of an explicit sync"""
    synced: bool
    report: Optional[Dict[str, Any]] = None
    lastSyncAt: Optional[str] = None


# ===== NETWORK SCHEMAS =====

class NetworkStatusRequest(BaseModel):
    """Synthetic connectivity transition"""
    status: Literal["online", "offline"]


class NetworkStatusResponse(BaseModel):
    status: str
    changed: bool
    isOfflineMode: bool


# ===== CACHE SCHEMAS =====

class InvalidateRequest(BaseModel):
    """Cache invalidation; no prefix clears everything"""
    prefix: Optional[str] = None


class InvalidateResponse(BaseModel):
    invalidated: int
