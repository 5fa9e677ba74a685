"""
Paginated, rate-limit-aware client for the Linear GraphQL API.

The client posts GraphQL documents over a synchronous ``httpx.Client`` and
pages through connections with cursors. Failures are classified before
anything else happens:

- transient: 5xx, timeouts, dropped connections, HTTP 429 and GraphQL
  rate-limit errors. Retried in place with exponential backoff; the cursor
  only advances after a page succeeds, so no page is ever skipped.
- fatal: other 4xx responses and GraphQL validation errors. Raised
  immediately.

Every HTTP call increments a query counter tagged with the phase set via
``set_phase``, so operators can see how many queries each phase spent.

Example:
    >>> with LinearClient(api_key) as client:
    ...     client.set_phase("initial_issues")
    ...     for batch in client.fetch_started_issues():
    ...         writer.upsert_issues(batch)
    ...     print(client.query_counts)
    {'initial_issues': 3}
"""

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from types import TracebackType
from typing import Any

import httpx

from flowpulse.core.exceptions import (
    APIError,
    AuthenticationError,
    FatalAPIError,
    RateLimitError,
    RetriesExhaustedError,
    TransientAPIError,
)
from flowpulse.core.linear import queries
from flowpulse.core.linear.backoff import ExponentialBackoff
from flowpulse.core.linear.models import (
    InitiativeData,
    ProjectDetails,
    ProjectSummary,
    issue_from_node,
    updates_from_connection,
)
from flowpulse.core.store.models import IssueRecord, StatusUpdate

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.linear.app/graphql"
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 100
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 5

UNSCOPED_PHASE = "unscoped"


@dataclass
class Page:
    """One page of a cursor-paginated connection."""

    records: list[dict[str, Any]]
    next_cursor: str | None
    has_more: bool


def is_rate_limit_payload(payload: Any) -> bool:
    """
    Detect Linear's rate-limit signals in a GraphQL error payload.

    Linear reports rate limiting as a GraphQL error whose extensions carry
    ``code: RATELIMITED`` or ``statusCode: 429``; older responses use
    ``type: Ratelimited`` or only say so in the message.
    """
    if not isinstance(payload, dict):
        return False
    for error in payload.get("errors") or []:
        if not isinstance(error, dict):
            continue
        extensions = error.get("extensions") or {}
        if extensions.get("code") == "RATELIMITED" or extensions.get("statusCode") == 429:
            return True
        if str(extensions.get("type", error.get("type", ""))).lower() == "ratelimited":
            return True
        message = str(error.get("message", "")).lower()
        if "rate limit" in message or "ratelimited" in message:
            return True
    return False


def _is_auth_payload(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    for error in payload.get("errors") or []:
        extensions = (error or {}).get("extensions") or {}
        if extensions.get("code") in ("AUTHENTICATION_ERROR", "FORBIDDEN"):
            return True
    return False


def _error_messages(payload: Any) -> str:
    if not isinstance(payload, dict):
        return "unknown error"
    messages = [str(e.get("message", e)) for e in payload.get("errors") or [] if e]
    return "; ".join(messages) or "unknown error"


def classify_response(response: httpx.Response) -> dict[str, Any]:
    """
    Turn an HTTP response into GraphQL data or a classified APIError.

    Args:
        response: Response to a GraphQL POST

    Returns:
        The ``data`` object of a successful response

    Raises:
        RateLimitError: HTTP 429 or a GraphQL rate-limit error
        TransientAPIError: 5xx responses
        AuthenticationError: 401/403 or an authentication GraphQL error
        FatalAPIError: any other error response
    """
    try:
        payload = response.json()
    except ValueError:
        payload = None

    status = response.status_code
    if status == 429 or is_rate_limit_payload(payload):
        raise RateLimitError("Linear API rate limit exceeded", status_code=status)
    if status >= 500:
        raise TransientAPIError(f"Linear API server error (HTTP {status})", status_code=status)
    if status in (401, 403) or _is_auth_payload(payload):
        raise AuthenticationError(
            f"Linear API rejected the credentials (HTTP {status})", status_code=status
        )
    if status >= 400:
        raise FatalAPIError(
            f"Linear API request failed (HTTP {status}): {_error_messages(payload)}",
            status_code=status,
        )
    if not isinstance(payload, dict):
        raise FatalAPIError("Linear API returned a non-JSON response", status_code=status)
    if payload.get("errors"):
        raise FatalAPIError(
            f"Linear API GraphQL error: {_error_messages(payload)}", status_code=status
        )
    data = payload.get("data")
    return data if isinstance(data, dict) else {}


def _dig(data: dict[str, Any], path: Sequence[str]) -> Any:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


class LinearClient:
    """
    Client for the Linear GraphQL API.

    Attributes:
        query_counts: HTTP calls made per phase name
        backoff: Shared consecutive-failure backoff
        max_retries: Transient failures tolerated in a row before giving up
        on_retry: Optional hook called with (attempt, delay, error) before
            each backoff sleep
    """

    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: ExponentialBackoff | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")

        self.api_url = api_url
        self.timeout = timeout
        self.page_size = page_size
        self.max_pages = max_pages
        self.max_retries = max_retries
        self.backoff = backoff or ExponentialBackoff()
        self.query_counts: dict[str, int] = {}
        self.phase = UNSCOPED_PHASE
        self._sleep = sleep
        self.on_retry: Callable[[int, float, APIError], None] | None = None
        self._http = httpx.Client(
            headers={"Authorization": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "LinearClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # Query accounting
    # ------------------------------------------------------------------

    def set_phase(self, phase: str) -> None:
        """Tag subsequent queries with a phase name."""
        self.phase = phase

    def reset_query_counts(self) -> None:
        self.query_counts = {}

    @property
    def query_count(self) -> int:
        return sum(self.query_counts.values())

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(self, query: str, variables: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        self.query_counts[self.phase] = self.query_counts.get(self.phase, 0) + 1
        try:
            response = self._http.post(
                self.api_url,
                json={"query": query, "variables": variables},
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientAPIError(f"Linear API request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientAPIError(f"Linear API connection failed: {e}") from e
        return classify_response(response)

    def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Run one GraphQL request, retrying transient failures in place.

        Args:
            query: GraphQL document
            variables: Query variables

        Returns:
            The response ``data`` object

        Raises:
            FatalAPIError: On a non-retryable failure
            RetriesExhaustedError: When transient failures exceed max_retries
        """
        variables = variables or {}
        while True:
            try:
                data = self._post(query, variables)
            except APIError as e:
                if not e.transient:
                    logger.debug(f"Non-retryable Linear API error: {e}")
                    raise
                delay = self.backoff.record_failure()
                failures = self.backoff.failure_count
                if failures > self.max_retries:
                    logger.warning(f"Linear API: max retries ({self.max_retries}) exceeded: {e}")
                    kind = "rate limit" if isinstance(e, RateLimitError) else "transient error"
                    self.backoff.reset()
                    raise RetriesExhaustedError(
                        f"Linear API {kind} persisted after {self.max_retries} retries: {e}",
                        attempts=failures,
                        rate_limited=isinstance(e, RateLimitError),
                    ) from e
                logger.info(
                    f"Linear API: retry {failures}/{self.max_retries} after {delay:.2f}s due to: {e}"
                )
                if self.on_retry is not None:
                    self.on_retry(failures, delay, e)
                self._sleep(delay)
                continue
            self.backoff.record_success()
            return data

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    def fetch_page(
        self,
        query: str,
        variables: dict[str, Any],
        path: Sequence[str],
        cursor: str | None = None,
        page_size: int | None = None,
    ) -> Page:
        """
        Fetch one page of a connection.

        Args:
            query: GraphQL document taking ``$first`` and ``$after``
            variables: Other query variables
            path: Keys leading from ``data`` to the connection
            cursor: Cursor returned by the previous page
            page_size: Override for the client's page size

        Returns:
            Page with the raw nodes and the next cursor
        """
        data = self.execute(
            query, {**variables, "first": page_size or self.page_size, "after": cursor}
        )
        connection = _dig(data, path)
        if not isinstance(connection, dict):
            return Page(records=[], next_cursor=None, has_more=False)
        page_info = connection.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor")
        return Page(
            records=list(connection.get("nodes") or []),
            next_cursor=next_cursor,
            has_more=bool(page_info.get("hasNextPage")) and next_cursor is not None,
        )

    def fetch_all(
        self,
        query: str,
        variables: dict[str, Any],
        path: Sequence[str],
        start_cursor: str | None = None,
    ) -> Iterator[list[dict[str, Any]]]:
        """
        Lazily yield node batches, one per page.

        The generator is finite: it stops when the API reports no further
        page or after ``max_pages`` pages. Pass ``start_cursor`` to resume
        after a page that was already consumed.
        """
        cursor = start_cursor
        pages = 0
        while True:
            page = self.fetch_page(query, variables, path, cursor)
            pages += 1
            yield page.records
            if not page.has_more:
                return
            if pages >= self.max_pages:
                logger.warning(
                    f"Fetched {pages} pages of {'.'.join(path)}, stopping to avoid an endless loop"
                )
                return
            cursor = page.next_cursor

    def _iter_issues(
        self, query: str, variables: dict[str, Any]
    ) -> Iterator[list[IssueRecord]]:
        for nodes in self.fetch_all(query, variables, ("issues",)):
            batch = [issue for issue in map(issue_from_node, nodes) if issue is not None]
            yield batch

    # ------------------------------------------------------------------
    # Domain queries
    # ------------------------------------------------------------------

    def fetch_started_issues(self) -> Iterator[list[IssueRecord]]:
        """Yield started issues page by page."""
        return self._iter_issues(queries.STARTED_ISSUES, {})

    def fetch_recently_updated_issues(self, since: datetime) -> Iterator[list[IssueRecord]]:
        """Yield issues updated at or after ``since`` page by page."""
        return self._iter_issues(queries.RECENTLY_UPDATED_ISSUES, {"since": since.isoformat()})

    def fetch_project_issues(self, project_id: str) -> Iterator[list[IssueRecord]]:
        """Yield every issue of one project page by page."""
        return self._iter_issues(queries.PROJECT_ISSUES, {"projectId": project_id})

    def fetch_projects_by_state(self, states: Sequence[str]) -> list[ProjectSummary]:
        """List projects whose state is one of ``states``."""
        projects: list[ProjectSummary] = []
        for nodes in self.fetch_all(queries.PROJECTS_BY_STATE, {"states": list(states)}, ("projects",)):
            projects.extend(ProjectSummary.from_node(node) for node in nodes)
        return projects

    def fetch_project_ids(
        self, states: Sequence[str], closed_since: datetime | None = None
    ) -> list[str]:
        """
        Project ids in the given states, in API order.

        With ``closed_since``, only projects completed or canceled at or
        after that moment are kept.
        """
        ids = []
        for project in self.fetch_projects_by_state(states):
            if closed_since is not None:
                closed_at = project.completed_at or project.canceled_at
                if closed_at is None or closed_at < closed_since:
                    continue
            ids.append(project.id)
        return ids

    def fetch_project_details(self, project_id: str) -> ProjectDetails | None:
        """Fetch description, content, labels, teams and updates of a project."""
        data = self.execute(queries.PROJECT_DETAILS, {"projectId": project_id})
        node = data.get("project")
        if not node:
            return None
        return ProjectDetails.from_node(node)

    def fetch_initiatives(self) -> list[InitiativeData]:
        """List all initiatives with their member project ids."""
        initiatives: list[InitiativeData] = []
        for nodes in self.fetch_all(queries.INITIATIVES, {}, ("initiatives",)):
            initiatives.extend(InitiativeData.from_node(node) for node in nodes)
        return initiatives

    def fetch_initiative_updates(self, initiative_id: str) -> list[StatusUpdate]:
        """Fetch an initiative's health updates, newest first."""
        data = self.execute(queries.INITIATIVE_UPDATES, {"initiativeId": initiative_id})
        node = data.get("initiative") or {}
        return updates_from_connection(node.get("initiativeUpdates"))

    def test_connection(self) -> bool:
        """
        Check that the API is reachable and the key is accepted.

        Makes a single attempt with the client timeout. Network and server
        problems report False.

        Raises:
            AuthenticationError: The API rejected the key
        """
        try:
            data = self._post(queries.VIEWER, {}, timeout=self.timeout)
        except AuthenticationError:
            raise
        except APIError as e:
            logger.error(f"Connection test failed: {e}")
            return False
        return bool(data.get("viewer"))


__all__ = [
    "LinearClient",
    "Page",
    "classify_response",
    "is_rate_limit_payload",
    "DEFAULT_API_URL",
]
