"""
Offline mutation queue: buffers writes while disconnected and replays them
in timestamp order on reconnect.
"""
from .models import (
    ChangeType,
    MutationBackend,
    MutationOutcome,
    OfflineState,
    PendingChange,
    ReplayReport,
)
from .queue import OfflineMutationQueue

__all__ = [
    # Models
    "ChangeType",
    "MutationBackend",
    "MutationOutcome",
    "OfflineState",
    "PendingChange",
    "ReplayReport",
    # Queue
    "OfflineMutationQueue",
]
