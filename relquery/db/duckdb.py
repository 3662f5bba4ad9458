"""DuckDB database adapter."""

from typing import Any

import duckdb

from relquery.db.base import BaseDatabaseAdapter, rows_from_description
from relquery.validation import TransportError


class DuckDBAdapter(BaseDatabaseAdapter):
    """DuckDB database adapter.

    Wraps DuckDB connection to provide unified adapter interface.
    """

    def __init__(self, path: str = ":memory:"):
        """Initialize DuckDB adapter.

        Args:
            path: Database file path or ":memory:" for in-memory database
        """
        try:
            self.conn = duckdb.connect(path)
        except duckdb.Error as e:
            raise TransportError(f"Could not open DuckDB database '{path}': {e}") from e

    def execute(self, sql: str) -> Any:
        """Execute SQL and return DuckDB result."""
        try:
            return self.conn.execute(sql)
        except duckdb.Error as e:
            raise TransportError(str(e)) from e

    def fetchall(self, result: Any) -> list[dict[str, Any]]:
        """Fetch all rows as dicts."""
        if result.description is None:
            return []
        try:
            rows = result.fetchall()
        except duckdb.Error as e:
            raise TransportError(str(e)) from e
        return rows_from_description(result.description, rows)

    def close(self) -> None:
        """Close database connection."""
        self.conn.close()

    @property
    def dialect(self) -> str:
        """Get SQLGlot dialect name."""
        return "duckdb"

    @property
    def raw_connection(self) -> Any:
        """Get underlying DuckDB connection."""
        return self.conn

    @classmethod
    def from_url(cls, url: str) -> "DuckDBAdapter":
        """Create adapter from connection URL.

        Args:
            url: Connection URL (e.g., "duckdb:///:memory:" or "duckdb:///path/to/db.duckdb")

        Returns:
            DuckDBAdapter instance
        """
        if not url.startswith("duckdb://"):
            raise ValueError(f"Invalid DuckDB URL: {url}")

        # duckdb:///:memory: -> :memory:
        # duckdb:///tmp/app.db -> /tmp/app.db
        # duckdb:/// -> :memory:
        db_path = url[len("duckdb://") :]

        if db_path in ("/:memory:", ":memory:", "", "/"):
            db_path = ":memory:"

        return cls(db_path)
