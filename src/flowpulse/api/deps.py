"""
Shared dependencies for the API routes.

Routes receive the SyncService through ``Depends(get_service)``; tests
replace it with ``app.dependency_overrides``.
"""

import threading

from flowpulse.core.config import load_config
from flowpulse.core.sync.service import SyncService

_service: SyncService | None = None
_lock = threading.Lock()


def get_service() -> SyncService:
    """The process-wide SyncService, created from configuration on first use."""
    global _service
    with _lock:
        if _service is None:
            _service = SyncService.from_config(load_config())
        return _service


def set_service(service: SyncService | None) -> None:
    """Install the service the routes use (``flowpulse serve`` passes its own)."""
    global _service
    with _lock:
        _service = service
