"""Database adapter abstraction layer."""

from relquery.db.base import BaseDatabaseAdapter

__all__ = ["BaseDatabaseAdapter", "adapter_from_url"]


def __getattr__(name):
    """Lazy import database adapters to avoid importing optional dependencies."""
    if name == "DuckDBAdapter":
        from relquery.db.duckdb import DuckDBAdapter

        return DuckDBAdapter
    if name == "PostgreSQLAdapter":
        from relquery.db.postgres import PostgreSQLAdapter

        return PostgreSQLAdapter
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


def adapter_from_url(url: str) -> BaseDatabaseAdapter:
    """Create the adapter matching a connection URL's scheme.

    Args:
        url: Connection URL (duckdb:///..., postgres://...)

    Returns:
        Connected adapter
    """
    if url.startswith("duckdb://"):
        from relquery.db.duckdb import DuckDBAdapter

        return DuckDBAdapter.from_url(url)
    if url.startswith(("postgres://", "postgresql://")):
        from relquery.db.postgres import PostgreSQLAdapter

        return PostgreSQLAdapter.from_url(url)
    raise NotImplementedError(f"Connection type {url} not yet supported")
