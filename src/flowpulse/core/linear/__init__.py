"""
Linear API access for flowpulse.

Main components:
- client.py: paginated GraphQL client with error classification and retry
- backoff.py: consecutive-failure exponential backoff
- queries.py: GraphQL documents
- models.py: mapping of API nodes onto flowpulse records
"""

from flowpulse.core.linear.backoff import ExponentialBackoff
from flowpulse.core.linear.client import LinearClient, Page, classify_response
from flowpulse.core.linear.models import (
    InitiativeData,
    ProjectDetails,
    ProjectSummary,
    issue_from_node,
)

__all__ = [
    "LinearClient",
    "Page",
    "ExponentialBackoff",
    "classify_response",
    "issue_from_node",
    "ProjectSummary",
    "ProjectDetails",
    "InitiativeData",
]
