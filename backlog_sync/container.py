"""
Composition root.

Builds the consistency layer once per process (or per test) and hands the
pieces to whoever needs them. Nothing in backlog_sync creates shared
instances at import time.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from backlog_sync.api_client import ItemGroupsClient
from backlog_sync.cache import RequestCoalescer, StatsReporter
from backlog_sync.coalesced_api import CoalescedItemGroupsAPI
from backlog_sync.network import (
    ManualNetworkStatusSource,
    NetworkMonitor,
    NetworkStatusSource,
    ProbeNetworkStatusSource,
)
from backlog_sync.offline import OfflineMutationQueue, OfflineState
from backlog_sync.state import StateStore
from backlog_sync.timing import Clock, SystemClock
from config.settings import Settings

logger = logging.getLogger("container")


@dataclass
class AppContainer:
    """Everything the service routes need, wired together."""
    settings: Settings
    client: ItemGroupsClient
    coalescer: RequestCoalescer
    api: CoalescedItemGroupsAPI
    store: StateStore[OfflineState]
    queue: OfflineMutationQueue
    source: NetworkStatusSource
    monitor: NetworkMonitor
    stats: StatsReporter

    @property
    def manual_source(self) -> Optional[ManualNetworkStatusSource]:
        """The source if it accepts synthetic transitions, else None."""
        if isinstance(self.source, ManualNetworkStatusSource):
            return self.source
        return None

    async def start(self) -> None:
        """Announce initial connectivity and start probing if configured."""
        self.monitor.activate()
        if isinstance(self.source, ProbeNetworkStatusSource):
            self.source.start()
        logger.info("Consistency layer started")

    async def stop(self) -> None:
        """Stop probing, detach the monitor and release resources."""
        if isinstance(self.source, ProbeNetworkStatusSource):
            await self.source.stop()
        self.monitor.deactivate()
        self.coalescer.shutdown()
        self.stats.log_summary()
        self.client.close()
        logger.info("Consistency layer stopped")


def build_container(
    settings: Settings,
    client: Optional[ItemGroupsClient] = None,
    source: Optional[NetworkStatusSource] = None,
    clock: Optional[Clock] = None,
) -> AppContainer:
    """
    Wire the consistency layer from settings.

    Args:
        settings: Application settings
        client: Backend client; built from settings if omitted
        source: Connectivity source; a probe or manual source per settings if omitted
        clock: Time source shared by the coalescer, queue and monitor

    Returns:
        AppContainer with every component constructed (not yet started)

    Raises:
        ConfigurationError: If a coalescer or queue setting is out of range
    """
    clock = clock or SystemClock()

    if client is None:
        client = ItemGroupsClient(
            settings.backend_base_url,
            timeout=settings.backend_timeout_seconds,
            api_key=settings.backend_api_key,
        )

    coalescer = RequestCoalescer(
        cache_ttl=settings.coalescer_cache_ttl_seconds,
        debounce=settings.coalescer_debounce_seconds,
        enable_logging=settings.coalescer_logging,
        max_entries=settings.coalescer_max_entries,
        clock=clock,
    )
    api = CoalescedItemGroupsAPI(client, coalescer)

    store: StateStore[OfflineState] = StateStore(OfflineState())
    # Replayed writes go through the adapter so they invalidate stale reads
    queue = OfflineMutationQueue(
        store,
        api,
        max_replay_attempts=settings.offline_max_replay_attempts,
        clock=clock,
    )

    if source is None:
        if settings.network_probe_enabled:
            probe_path = settings.network_probe_path
            source = ProbeNetworkStatusSource(
                lambda: client.ping(probe_path),
                interval=settings.network_probe_interval_seconds,
            )
        else:
            source = ManualNetworkStatusSource()

    monitor = NetworkMonitor(
        source,
        queue,
        online_debounce=settings.network_online_debounce_seconds,
        clock=clock,
    )

    return AppContainer(
        settings=settings,
        client=client,
        coalescer=coalescer,
        api=api,
        store=store,
        queue=queue,
        source=source,
        monitor=monitor,
        stats=StatsReporter(coalescer),
    )
