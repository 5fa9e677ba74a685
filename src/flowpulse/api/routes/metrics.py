"""
Metrics API routes.

- GET /api/metrics/trends - Week and month trends of the pillar metrics
- GET /api/metrics/latest - The most recent snapshot of a level
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from flowpulse.api.deps import get_service
from flowpulse.core.snapshots.trends import MetricTrends, trends_for_level
from flowpulse.core.store.models import MetricsSnapshot, SnapshotLevel
from flowpulse.core.store.queries import get_snapshots
from flowpulse.core.sync.service import SyncService

router = APIRouter()


def _check_level(level: SnapshotLevel, level_id: str | None) -> None:
    if level == SnapshotLevel.ORG and level_id:
        raise HTTPException(status_code=400, detail="level_id is not allowed for level 'org'")
    if level != SnapshotLevel.ORG and not level_id:
        raise HTTPException(status_code=400, detail=f"level_id is required for level '{level.value}'")


@router.get("/metrics/trends", response_model=dict[str, MetricTrends])
def get_trends(
    level: SnapshotLevel = SnapshotLevel.ORG,
    level_id: str | None = None,
    service: SyncService = Depends(get_service),
) -> dict[str, MetricTrends]:
    """
    Get week and month trends for one level.

    Example response:
        {
          "wip_health": {
            "week": {"direction": "up", "change": 6.5, "has_enough_data": true, "actual_days": 7},
            "month": {"direction": "stable", "change": 0.0, "has_enough_data": false}
          },
          "project_health": {...},
          "quality": {...}
        }
    """
    _check_level(level, level_id)
    return trends_for_level(service.store, level, level_id, datetime.now(timezone.utc))


@router.get("/metrics/latest", response_model=MetricsSnapshot)
def get_latest(
    level: SnapshotLevel = SnapshotLevel.ORG,
    level_id: str | None = None,
    service: SyncService = Depends(get_service),
) -> MetricsSnapshot:
    """
    Get the most recent snapshot of one level.

    Raises:
        HTTPException: 404 if nothing was captured yet
    """
    _check_level(level, level_id)
    snapshots = get_snapshots(service.store, level, level_id)
    if not snapshots:
        raise HTTPException(status_code=404, detail="No snapshots captured yet")
    return snapshots[-1]
