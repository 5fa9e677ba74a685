"""
Periodic sync scheduling.

Runs a sync every ``interval_minutes`` on a daemon timer thread. A tick
that finds a sync already in progress is skipped, not queued.
"""

import logging
import threading

from flowpulse.core.exceptions import SyncInProgressError
from flowpulse.core.sync.models import SyncResult
from flowpulse.core.sync.service import SyncService

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Timer loop around a SyncService.

    Example:
        >>> scheduler = SyncScheduler(service, interval_minutes=10)
        >>> scheduler.start()
        >>> scheduler.stop()
    """

    def __init__(
        self,
        service: SyncService,
        interval_minutes: float = 10,
        *,
        full_project_sync: bool = True,
    ) -> None:
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.service = service
        self.interval_seconds = interval_minutes * 60
        self.full_project_sync = full_project_sync
        self._timer: threading.Timer | None = None
        self._stopped = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._stopped.is_set()

    def start(self, run_immediately: bool = True) -> None:
        """Start the loop; the first sync runs now or after one interval."""
        self._stopped.clear()
        logger.info(f"Scheduling syncs every {self.interval_seconds / 60:g} minute(s)")
        self._schedule(0 if run_immediately else self.interval_seconds)

    def stop(self) -> None:
        """Cancel the next tick and ask a running sync to stop."""
        self._stopped.set()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if self.service.orchestrator.is_running:
            self.service.request_stop()

    def _schedule(self, delay: float) -> None:
        with self._lock:
            if self._stopped.is_set():
                return
            self._timer = threading.Timer(delay, self._run)
            self._timer.daemon = True
            self._timer.start()

    def _run(self) -> None:
        try:
            self.tick()
        finally:
            self._schedule(self.interval_seconds)

    def tick(self) -> SyncResult | None:
        """
        Run one scheduled sync.

        Returns:
            The sync result, or None when the tick was skipped
        """
        if self.service.is_syncing():
            logger.info("Sync already in progress, skipping scheduled run")
            return None
        try:
            result, _ = self.service.trigger_sync(self.full_project_sync)
        except SyncInProgressError:
            logger.info("Sync already in progress, skipping scheduled run")
            return None
        if result.success:
            logger.info(f"Scheduled sync complete: {result.total_changes} issue change(s)")
        else:
            logger.warning(f"Scheduled sync did not complete: {result.error}")
        return result
