"""Base database adapter interface."""

import re
from abc import ABC, abstractmethod
from typing import Any

# Pattern for valid SQL identifiers: starts with letter or underscore,
# followed by letters, digits, or underscores. Also allows dots for
# qualified names (schema.table).
_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)*$")


def validate_identifier(value: str, name: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier.

    Prevents SQL injection by ensuring identifiers only contain safe characters.
    Allows: letters, digits, underscores, and dots (for qualified names).
    Must start with a letter or underscore.

    Args:
        value: The identifier value to validate
        name: Human-readable name for error messages (e.g., "table name", "column")

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if not value:
        raise ValueError(f"Invalid {name}: cannot be empty")

    if not _IDENTIFIER_PATTERN.match(value):
        raise ValueError(
            f"Invalid {name}: '{value}'. "
            f"Identifiers must start with a letter or underscore and contain only "
            f"letters, digits, underscores, and dots."
        )

    return value


class BaseDatabaseAdapter(ABC):
    """Abstract base class for database adapters.

    Adapters are the engine's only contact with the relational backend:
    a statement goes in, rows come out. Driver failures surface as
    TransportError.
    """

    @abstractmethod
    def execute(self, sql: str) -> Any:
        """Execute SQL and return result object.

        Args:
            sql: SQL statement to execute

        Returns:
            Database-specific result object

        Raises:
            TransportError: If the backend rejects or fails the statement
        """
        raise NotImplementedError

    @abstractmethod
    def fetchall(self, result: Any) -> list[dict[str, Any]]:
        """Fetch all rows from result as column-keyed dicts.

        Args:
            result: Result object from execute()

        Returns:
            List of row dicts (empty when the statement produced no rows)
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        raise NotImplementedError

    @property
    @abstractmethod
    def dialect(self) -> str:
        """Get SQLGlot dialect name.

        Returns:
            Dialect name (e.g., 'duckdb', 'postgres')
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def raw_connection(self) -> Any:
        """Get underlying database connection object.

        Returns:
            Raw connection (DuckDBPyConnection, psycopg.Connection, etc.)
        """
        raise NotImplementedError


def rows_from_description(description: Any, rows: list[tuple]) -> list[dict[str, Any]]:
    """Zip DB-API style cursor description with row tuples."""
    if not description:
        return []
    columns = [col[0] for col in description]
    return [dict(zip(columns, row)) for row in rows]
