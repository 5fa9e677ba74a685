"""
Sync service: the control surface over the orchestrator.

The CLI and the HTTP API both go through this service instead of touching
the orchestrator, the store or the client directly.

Usage:
    >>> from flowpulse.core.sync.service import SyncService
    >>> service = SyncService.from_config(load_config())
    >>> result, events = service.trigger_sync(full_project_sync=False)
    >>> print(service.get_sync_status().status)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from flowpulse.core.config.models import FlowPulseConfig
from flowpulse.core.exceptions import FlowPulseError, SyncInProgressError
from flowpulse.core.linear.backoff import ExponentialBackoff
from flowpulse.core.linear.client import LinearClient
from flowpulse.core.store.connection import Store
from flowpulse.core.store.models import SyncStatus
from flowpulse.core.store.queries import get_sync_metadata
from flowpulse.core.store.writer import RecordWriter
from flowpulse.core.sync.events import EventRecorder, EventStream, SyncEvent
from flowpulse.core.sync.models import SyncOptions, SyncResult, SyncStatusReport
from flowpulse.core.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def build_client(config: FlowPulseConfig, *, require_api_key: bool = True) -> LinearClient:
    """
    Create a Linear client from configuration.

    Raises:
        FlowPulseError: If no API key is configured and one is required
    """
    if require_api_key and not config.linear.api_key:
        raise FlowPulseError("LINEAR_API_KEY is not set. Add it to your environment or .env file.")
    backoff = ExponentialBackoff(
        initial_delay=config.backoff.initial_delay,
        multiplier=config.backoff.multiplier,
        max_delay=config.backoff.max_delay,
    )
    return LinearClient(
        config.linear.api_key or "",
        api_url=config.linear.api_url,
        timeout=config.linear.timeout,
        page_size=config.linear.page_size,
        max_pages=config.linear.max_pages,
        max_retries=config.backoff.max_retries,
        backoff=backoff,
    )


class SyncService:
    """
    Triggers syncs and reports their status.

    Example:
        >>> service = SyncService(store, client, config)
        >>> result, events = service.trigger_sync()
        >>> result.success
        True
    """

    def __init__(
        self,
        store: Store,
        client: LinearClient,
        config: FlowPulseConfig | None = None,
        *,
        events: EventStream | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.config = config or FlowPulseConfig()
        self.events = events or EventStream()
        self.orchestrator = SyncOrchestrator(
            store, client, self.config, events=self.events, clock=clock
        )

    @classmethod
    def from_config(cls, config: FlowPulseConfig, *, require_api_key: bool = True) -> SyncService:
        """
        Open the configured store and build a client.

        Args:
            config: Loaded configuration
            require_api_key: Pass False for status and maintenance commands
                that never call the API

        Raises:
            FlowPulseError: If no API key is configured and one is required
            MigrationError: If the store cannot be migrated
        """
        client = build_client(config, require_api_key=require_api_key)
        store = Store(config.sync.db_path).open()
        return cls(store, client, config)

    def close(self) -> None:
        self.client.close()
        self.store.close()

    def __enter__(self) -> SyncService:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ============================================================================
    # Sync control
    # ============================================================================

    def trigger_sync(
        self, full_project_sync: bool = True, *, force: bool = False
    ) -> tuple[SyncResult, list[SyncEvent]]:
        """
        Run a sync and collect the events it published.

        Args:
            full_project_sync: False runs a quick sync (issues and metrics)
            force: Clear a ``syncing`` status left behind by a dead process
                before starting

        Returns:
            (result, events in publication order)

        Raises:
            SyncInProgressError: If a sync is running and ``force`` is not set
        """
        if force:
            self.clear_stale_sync()
        recorder = EventRecorder()
        unsubscribe = self.events.subscribe(recorder)
        try:
            result = self.orchestrator.run(SyncOptions(full_project_sync=full_project_sync))
        finally:
            unsubscribe()
        return result, recorder.events

    def sync_project(self, project_id: str) -> SyncResult:
        """Refresh one project and recompute engineers."""
        return self.orchestrator.sync_project(project_id)

    def request_stop(self) -> None:
        self.orchestrator.request_stop()

    def is_syncing(self) -> bool:
        return (
            self.orchestrator.is_running
            or get_sync_metadata(self.store).status == SyncStatus.SYNCING
        )

    def clear_stale_sync(self) -> bool:
        """
        Reset a ``syncing`` status that no live run owns.

        Returns:
            True if a stale status was cleared

        Raises:
            SyncInProgressError: If this process is running a sync
        """
        if self.orchestrator.is_running:
            raise SyncInProgressError("A sync is running in this process")
        if get_sync_metadata(self.store).status != SyncStatus.SYNCING:
            return False
        logger.warning("Clearing stale 'syncing' status")
        RecordWriter(self.store).update_sync_metadata(
            status=SyncStatus.IDLE, error_message="Previous sync was interrupted"
        )
        return True

    # ============================================================================
    # Status and maintenance
    # ============================================================================

    def get_sync_status(self) -> SyncStatusReport:
        """Current status, progress and schema health of the store."""
        meta = get_sync_metadata(self.store)
        check = self.store.schema_check
        return SyncStatusReport(
            status=meta.status,
            current_phase=meta.current_phase,
            last_sync_time=meta.last_sync_time,
            progress_percent=meta.progress_percent,
            error_message=meta.error_message,
            query_counts=meta.query_counts,
            resumable=meta.partial_state is not None,
            schema_ok=check.ok,
            schema_problem=None if check.ok else check.describe(),
        )

    def reset_store(self) -> None:
        """
        Drop and recreate every table.

        Raises:
            SyncInProgressError: If a sync is running
        """
        if self.is_syncing():
            raise SyncInProgressError("Cannot reset the store while a sync is running")
        self.store.reset()
