"""
Database handle for the flowpulse store.

The store is an explicitly constructed object with an ``open``/``close``
lifecycle owned by whoever runs the sync. There is no module-level cached
connection, so two stores (or two tests) never share state by accident.

The connection follows the same SQLite settings throughout:
- WAL mode so readers see committed rows while the sync writes
- Foreign key enforcement for the team child tables
- Row factory for dict-like access
- Autocommit mode with explicit ``BEGIN IMMEDIATE`` transactions

Usage:
    from flowpulse.core.store import Store

    with Store(Path(".flowpulse/flowpulse.db")) as store:
        with store.transaction() as conn:
            conn.execute("DELETE FROM issues WHERE team_key = ?", ("OPS",))
        rows = store.query("SELECT * FROM projects")
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import TracebackType
from typing import Any

from flowpulse.core.exceptions import StoreError
from flowpulse.core.store.schema import (
    SchemaCheck,
    apply_migrations,
    drop_all,
    validate_schema,
)

logger = logging.getLogger(__name__)


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """
    Row factory that returns rows as dictionaries.

    Args:
        cursor: SQLite cursor
        row: Raw row tuple from database

    Returns:
        Dictionary mapping column names to values
    """
    fields = [column[0] for column in cursor.description]
    return dict(zip(fields, row))


def configure_connection(conn: sqlite3.Connection) -> None:
    """
    Configure a SQLite connection with the store's settings.

    Args:
        conn: SQLite connection to configure
    """
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = dict_factory


class Store:
    """
    Explicit handle on the SQLite store.

    Opening the store applies pending migrations (which only ever add
    tables or columns) and then validates the live schema. A mismatch is
    kept in ``schema_check`` rather than raised so existing data can still
    be read; the orchestrator refuses to sync until an explicit ``reset``.

    Example:
        >>> store = Store(tmp_path / "flowpulse.db").open()
        >>> store.schema_check.ok
        True
        >>> store.close()
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._depth = 0
        self.schema_check = SchemaCheck()

    def open(self, *, migrate: bool = True) -> "Store":
        """
        Open the connection, migrate and validate.

        Args:
            migrate: Apply pending migrations before validating. Pass False
                to open a store that is about to be reset.

        Returns:
            self, for chaining

        Raises:
            MigrationError: If a pending migration fails
        """
        if self._conn is not None:
            return self

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        configure_connection(conn)
        self._conn = conn

        if migrate:
            applied = apply_migrations(conn)
            if applied:
                logger.debug(f"Store {self.db_path}: applied migrations {applied}")
        self.schema_check = validate_schema(conn)
        if not self.schema_check.ok:
            logger.warning(f"Schema mismatch in {self.db_path}: {self.schema_check.describe()}")
        return self

    def close(self) -> None:
        """Close the connection if it is open."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._depth = 0

    def __enter__(self) -> "Store":
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Store is not open", db_path=str(self.db_path))
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of writes atomically.

        Commits on success and rolls back on any exception. Nested calls
        join the outer transaction.

        Yields:
            The open connection
        """
        conn = self.conn
        if self._depth:
            self._depth += 1
            try:
                yield conn
            finally:
                self._depth -= 1
            return

        conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            self._depth = 0

    def query(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Execute a query and return all rows as dicts."""
        return self.conn.execute(sql, params or ()).fetchall()

    def query_one(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Execute a query and return the first row, or None."""
        result = self.conn.execute(sql, params or ()).fetchone()
        return result  # type: ignore[no-any-return]

    def revalidate(self) -> SchemaCheck:
        """Re-run schema validation against the live database."""
        self.schema_check = validate_schema(self.conn)
        return self.schema_check

    def reset(self) -> None:
        """
        Drop and recreate every table.

        Destructive. Only the explicit reset operation on the control
        surface calls this.
        """
        logger.warning(f"Resetting store at {self.db_path}")
        drop_all(self.conn)
        apply_migrations(self.conn)
        self.revalidate()
