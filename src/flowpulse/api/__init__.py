"""
HTTP control surface for flowpulse.

API Endpoints:
- GET /api/sync/status - Current sync status
- POST /api/sync - Trigger a sync
- POST /api/sync/stop - Stop a running sync
- POST /api/sync/reset - Reset the store
- POST /api/sync/projects/{project_id} - Refresh one project
- GET /api/metrics/trends - Pillar metric trends
- GET /api/metrics/latest - Latest snapshot

Usage:
    # Run the server
    flowpulse serve

    # Or from Python
    from flowpulse.api.app import app
"""

from flowpulse.api.app import app

__all__ = ["app"]
