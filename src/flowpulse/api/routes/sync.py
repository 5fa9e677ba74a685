"""
Sync API routes.

- GET /api/sync/status - Current sync status and progress
- POST /api/sync - Start a sync in the background
- POST /api/sync/stop - Ask a running sync to stop
- POST /api/sync/reset - Drop and recreate the store
- POST /api/sync/projects/{project_id} - Refresh one project
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from flowpulse.api.deps import get_service
from flowpulse.core.exceptions import FlowPulseError, SyncInProgressError
from flowpulse.core.sync.models import SyncResult, SyncStatusReport
from flowpulse.core.sync.service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter()


def _run_sync(service: SyncService, full_project_sync: bool, force: bool) -> None:
    try:
        result, _ = service.trigger_sync(full_project_sync, force=force)
    except SyncInProgressError as e:
        logger.info(f"Background sync not started: {e}")
        return
    if not result.success:
        logger.warning(f"Background sync did not complete: {result.error}")


@router.get("/sync/status", response_model=SyncStatusReport)
def get_sync_status(service: SyncService = Depends(get_service)) -> SyncStatusReport:
    """
    Get the current sync status.

    Example response:
        {
          "status": "syncing",
          "current_phase": "active_projects",
          "progress_percent": 32,
          "query_counts": {"initial_issues": 3, "active_projects": 41},
          "resumable": true,
          "schema_ok": true
        }
    """
    return service.get_sync_status()


@router.post("/sync", status_code=status.HTTP_202_ACCEPTED)
def trigger_sync(
    background_tasks: BackgroundTasks,
    quick: bool = False,
    force: bool = False,
    service: SyncService = Depends(get_service),
) -> dict[str, str]:
    """
    Start a sync in the background.

    Args:
        quick: Only sync issues and recompute metrics
        force: Clear a stale ``syncing`` status first

    Raises:
        HTTPException: 409 if a sync is already running
    """
    if service.orchestrator.is_running or (service.is_syncing() and not force):
        raise HTTPException(status_code=409, detail="A sync is already in progress")
    background_tasks.add_task(_run_sync, service, not quick, force)
    return {"status": "started", "mode": "quick" if quick else "full"}


@router.post("/sync/stop", status_code=status.HTTP_202_ACCEPTED)
def stop_sync(service: SyncService = Depends(get_service)) -> dict[str, str]:
    """Ask a running sync to stop after its current unit."""
    if not service.orchestrator.is_running:
        return {"status": "idle"}
    service.request_stop()
    return {"status": "stopping"}


@router.post("/sync/reset")
def reset_store(service: SyncService = Depends(get_service)) -> dict[str, str]:
    """
    Drop and recreate every table.

    Raises:
        HTTPException: 409 if a sync is running
    """
    try:
        service.reset_store()
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return {"status": "reset"}


@router.post("/sync/projects/{project_id}", response_model=SyncResult)
def sync_project(project_id: str, service: SyncService = Depends(get_service)) -> SyncResult:
    """
    Refresh a single project.

    Raises:
        HTTPException: 409 if a sync is running, 502 if the refresh failed
    """
    try:
        result = service.sync_project(project_id)
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except FlowPulseError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error or "Project sync failed")
    return result
