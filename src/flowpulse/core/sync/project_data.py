"""
Per-run cache of project details.

A project can come up in several phases of one sync (active, then again as
a member of an initiative). Details are fetched at most once per run.
"""

import logging

from flowpulse.core.linear.client import LinearClient
from flowpulse.core.linear.models import ProjectDetails

logger = logging.getLogger(__name__)


class ProjectDataCache:
    """
    Project details keyed by project id, for the lifetime of one sync.

    A project the API does not return is cached as None so it is not asked
    for again.
    """

    def __init__(self) -> None:
        self._cache: dict[str, ProjectDetails | None] = {}

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, project_id: str) -> ProjectDetails | None:
        return self._cache.get(project_id)

    def set(self, project_id: str, details: ProjectDetails | None) -> None:
        self._cache[project_id] = details

    def get_or_fetch(self, client: LinearClient, project_id: str) -> ProjectDetails | None:
        """Return cached details, fetching them on first use."""
        if project_id not in self._cache:
            details = client.fetch_project_details(project_id)
            if details is None:
                logger.warning(f"Project {project_id} not found in Linear")
            self._cache[project_id] = details
        return self._cache[project_id]

    def clear(self) -> None:
        self._cache.clear()
