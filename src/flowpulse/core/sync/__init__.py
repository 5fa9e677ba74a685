"""
Sync engine.

Main components:
- orchestrator.py: phase-ordered, resumable sync from Linear into the store
- progress.py: durable checkpoint of the phase in progress
- scope.py: team and assignee scope with start-of-sync cleanup
- events.py: progress event stream
- project_data.py: per-run project details cache
- service.py: control surface used by the CLI and the API
- scheduler.py: periodic sync loop

Usage:
    from flowpulse.core.sync import SyncService

    with SyncService.from_config(config) as service:
        result, events = service.trigger_sync()
"""

from flowpulse.core.sync.events import EventKind, EventRecorder, EventStream, SyncEvent
from flowpulse.core.sync.models import SyncOptions, SyncResult, SyncStatusReport
from flowpulse.core.sync.orchestrator import SyncOrchestrator
from flowpulse.core.sync.progress import PartialSyncState, ProgressTracker
from flowpulse.core.sync.scheduler import SyncScheduler
from flowpulse.core.sync.scope import CleanupResult, TeamScope
from flowpulse.core.sync.service import SyncService, build_client

__all__ = [
    "CleanupResult",
    "EventKind",
    "EventRecorder",
    "EventStream",
    "PartialSyncState",
    "ProgressTracker",
    "SyncEvent",
    "SyncOptions",
    "SyncOrchestrator",
    "SyncResult",
    "SyncScheduler",
    "SyncService",
    "SyncStatusReport",
    "TeamScope",
    "build_client",
]
