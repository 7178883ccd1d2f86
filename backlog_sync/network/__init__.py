"""
Connectivity detection and transition handling.
"""
from .status import (
    ManualNetworkStatusSource,
    NetworkStatus,
    NetworkStatusSource,
    ProbeNetworkStatusSource,
)
from .monitor import NetworkMonitor

__all__ = [
    "ManualNetworkStatusSource",
    "NetworkMonitor",
    "NetworkStatus",
    "NetworkStatusSource",
    "ProbeNetworkStatusSource",
]
