"""
Derived workflow-health metrics.

Pure functions over store records and an explicit reference time.

Main components:
- validators.py: per-issue hygiene checks and violation counts
- calculations.py: WIP age, cycle/lead time, velocity, estimate accuracy
- status.py: project status flags and engineer badges
- projects.py: full project recomputation
- engineers.py: engineer WIP records
- health.py: team, velocity and quality pillars for snapshots
"""

from flowpulse.core.metrics.engineers import allowed_engineer_names, compute_engineers
from flowpulse.core.metrics.projects import compute_empty_project, compute_project

__all__ = [
    "allowed_engineer_names",
    "compute_engineers",
    "compute_empty_project",
    "compute_project",
]
