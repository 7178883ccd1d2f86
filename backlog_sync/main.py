"""
Backlog Sync - FastAPI service over the client-side consistency layer.
Reads are coalesced and cached, writes are buffered while offline and
replayed on reconnect.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from backlog_sync.container import AppContainer, build_container
from backlog_sync.errors import NetworkError
from backlog_sync.network import NetworkStatus
from backlog_sync.offline import MutationOutcome
from backlog_sync.schemas import (
    InvalidateRequest,
    InvalidateResponse,
    ItemCreate,
    ItemUpdate,
    MutationResponse,
    NetworkStatusRequest,
    NetworkStatusResponse,
    OfflineStatus,
    RetryDroppedResponse,
    SyncResponse,
)
from config.settings import settings as default_settings

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Backlog Sync"
APP_STAGE = "Alpha"

logger = logging.getLogger("main")


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """
    Build the service.

    Args:
        container: Pre-wired components (tests); built from settings at startup if omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = app.state.container or build_container(default_settings)
        logging.basicConfig(level=active.settings.log_level.upper())
        app.state.container = active
        await active.start()
        try:
            yield
        finally:
            await active.stop()

    app = FastAPI(
        title=f"{APP_NAME} ({APP_STAGE})",
        description="Coalesced reads and offline-aware writes for item groups",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_exception_handler(NetworkError, _network_error_handler)
    _register_routes(app)
    return app


async def _network_error_handler(request: Request, exc: NetworkError) -> JSONResponse:
    """Backend failures surface as 502; a backend 404 stays a 404."""
    status_code = 404 if exc.status_code == 404 else 502
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "backendStatus": exc.status_code},
    )


def get_container(request: Request) -> AppContainer:
    container = request.app.state.container
    if container is None:
        raise HTTPException(status_code=503, detail="Service not started")
    return container


def _mutation_response(outcome: MutationOutcome, response: Response) -> MutationResponse:
    if outcome.queued:
        response.status_code = 202
        return MutationResponse(queued=True, change=outcome.change.to_dict())
    return MutationResponse(queued=False, result=outcome.result)


def _register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health_check(container: AppContainer = Depends(get_container)):
        """Health check endpoint."""
        return {
            "status": "ok",
            "network": container.source.get_current_status().value,
            "offline": container.queue.is_offline_mode,
        }

    @app.get("/version")
    def version_info():
        """Version information endpoint."""
        return {
            "name": APP_NAME,
            "version": APP_VERSION,
            "stage": APP_STAGE,
            "full": f"{APP_NAME} {APP_VERSION} ({APP_STAGE})",
        }

    # ===== READS =====

    @app.get("/groups")
    async def list_groups(
        category: str = Query(..., min_length=1, description="Group category"),
        subcategory: Optional[str] = Query(None),
        search: Optional[str] = Query(None, description="Backend-side text filter"),
        limit: int = Query(50, ge=1, le=500),
        min_item_count: Optional[int] = Query(None, ge=0),
        refresh: bool = Query(False, description="Bypass the cache"),
        container: AppContainer = Depends(get_container),
    ):
        """List groups of a category. Concurrent identical calls share one backend request."""
        return await container.api.get_groups_by_category(
            category,
            subcategory=subcategory,
            search=search,
            limit=limit,
            min_item_count=min_item_count,
            force_refresh=refresh,
        )

    @app.get("/groups/{group_id}")
    async def get_group(
        group_id: str,
        include_items: bool = Query(False),
        refresh: bool = Query(False, description="Bypass the cache"),
        container: AppContainer = Depends(get_container),
    ):
        """Get one group, optionally with its items."""
        return await container.api.get_group(
            group_id, include_items=include_items, force_refresh=refresh
        )

    @app.get("/groups/{group_id}/items")
    async def get_group_items(
        group_id: str,
        refresh: bool = Query(False, description="Bypass the cache"),
        container: AppContainer = Depends(get_container),
    ):
        return await container.api.get_group_items(group_id, force_refresh=refresh)

    # ===== WRITES =====

    @app.post("/groups/{group_id}/items", response_model=MutationResponse)
    async def add_item(
        group_id: str,
        item: ItemCreate,
        response: Response,
        container: AppContainer = Depends(get_container),
    ):
        """Add an item. Returns 202 when the write was queued for replay."""
        outcome = await container.queue.add_item(group_id, item.model_dump(exclude_none=True))
        return _mutation_response(outcome, response)

    @app.delete("/groups/{group_id}/items/{item_id}", response_model=MutationResponse)
    async def remove_item(
        group_id: str,
        item_id: str,
        response: Response,
        container: AppContainer = Depends(get_container),
    ):
        """Remove an item. Returns 202 when the write was queued for replay."""
        outcome = await container.queue.remove_item(group_id, item_id)
        return _mutation_response(outcome, response)

    @app.patch("/groups/{group_id}/items/{item_id}", response_model=MutationResponse)
    async def update_item(
        group_id: str,
        item_id: str,
        updates: ItemUpdate,
        response: Response,
        container: AppContainer = Depends(get_container),
    ):
        """Update item fields. Returns 202 when the write was queued for replay."""
        outcome = await container.queue.update_item(
            group_id, item_id, updates.model_dump(exclude_unset=True)
        )
        return _mutation_response(outcome, response)

    # ===== OFFLINE =====

    @app.get("/offline/status", response_model=OfflineStatus)
    def offline_status(container: AppContainer = Depends(get_container)):
        """Offline flag, buffered and dropped changes, last sync time."""
        return OfflineStatus(
            **container.queue.state.to_dict(),
            isReplaying=container.queue.is_replaying,
        )

    @app.post("/offline/sync", response_model=SyncResponse)
    async def offline_sync(container: AppContainer = Depends(get_container)):
        """Replay pending changes now. Skipped while offline."""
        report = await container.queue.sync_with_backend()
        last_sync_at = container.queue.state.last_sync_at
        return SyncResponse(
            synced=report is not None,
            report=report.to_dict() if report is not None else None,
            lastSyncAt=last_sync_at.isoformat() if last_sync_at else None,
        )

    @app.post("/offline/dropped/clear")
    def clear_dropped(container: AppContainer = Depends(get_container)):
        """Forget changes abandoned after exhausting their replay attempts."""
        return {"cleared": container.queue.clear_dropped_changes()}

    @app.post("/offline/dropped/retry", response_model=RetryDroppedResponse)
    async def retry_dropped(container: AppContainer = Depends(get_container)):
        """Requeue dropped changes with a fresh attempt budget and replay them if online."""
        requeued = len(container.queue.state.dropped_changes)
        report = await container.queue.retry_dropped_changes()
        return RetryDroppedResponse(requeued=requeued, report=report.to_dict())

    # ===== NETWORK =====

    @app.post("/network/status", response_model=NetworkStatusResponse)
    async def set_network_status(
        body: NetworkStatusRequest,
        container: AppContainer = Depends(get_container),
    ):
        """
        Announce a synthetic connectivity transition.

        Only available when probing is disabled. If the transition brings the
        queue online, the response is sent after the replay it triggered.
        """
        source = container.manual_source
        if source is None:
            raise HTTPException(
                status_code=409,
                detail="Connectivity is probed; synthetic transitions are disabled",
            )
        changed = source.set_status(NetworkStatus(body.status))
        # No-op while offline or when nothing is buffered; otherwise joins the pass
        await container.queue.process_pending_changes()
        return NetworkStatusResponse(
            status=source.get_current_status().value,
            changed=changed,
            isOfflineMode=container.queue.is_offline_mode,
        )

    # ===== CACHE DIAGNOSTICS =====

    @app.get("/cache/stats")
    def cache_stats(container: AppContainer = Depends(get_container)):
        """Get coalescer statistics."""
        return container.stats.snapshot()

    @app.get("/cache/efficiency")
    def cache_efficiency(container: AppContainer = Depends(get_container)):
        return container.coalescer.get_efficiency().to_dict()

    @app.post("/cache/stats/reset")
    def reset_cache_stats(container: AppContainer = Depends(get_container)):
        """Zero the counters. Cached entries are kept."""
        container.coalescer.reset_stats()
        return container.coalescer.get_stats().to_dict()

    @app.post("/cache/invalidate", response_model=InvalidateResponse)
    def invalidate_cache(
        body: Optional[InvalidateRequest] = None,
        container: AppContainer = Depends(get_container),
    ):
        """Drop cached reads by key prefix, or all of them."""
        prefix = body.prefix if body is not None else None
        return InvalidateResponse(invalidated=container.coalescer.invalidate_cache(prefix))


app = create_app()
