"""Test DuckDB adapter."""

import pytest

from relquery import Session, TransportError
from relquery.db import adapter_from_url
from relquery.db.base import validate_identifier
from relquery.db.duckdb import DuckDBAdapter


def test_duckdb_adapter_basic():
    """Test basic DuckDB adapter functionality."""
    adapter = DuckDBAdapter()

    adapter.execute("CREATE TABLE test (id INTEGER, name VARCHAR)")
    adapter.execute("INSERT INTO test VALUES (1, 'Alice'), (2, 'Bob')")

    result = adapter.execute("SELECT * FROM test ORDER BY id")
    assert adapter.fetchall(result) == [{"id": 1, "name": "Alice"}, {"id": 2, "name": "Bob"}]
    assert adapter.dialect == "duckdb"
    assert adapter.raw_connection is adapter.conn

    adapter.close()


def test_duckdb_adapter_statement_without_rows():
    """Test DDL results fetch as no rows."""
    adapter = DuckDBAdapter()

    assert adapter.fetchall(adapter.execute("CREATE TABLE empty (id INTEGER)")) == []

    adapter.close()


def test_duckdb_adapter_errors_are_transport_errors():
    """Test driver failures surface as TransportError."""
    adapter = DuckDBAdapter()

    with pytest.raises(TransportError, match="missing_table"):
        adapter.execute("SELECT * FROM missing_table")

    adapter.close()


def test_session_propagates_transport_errors():
    """Test the session does not swallow backend failures."""
    with Session() as session:
        with pytest.raises(TransportError):
            session.execute("SELEC 1")


def test_duckdb_from_url(tmp_path):
    """Test creating adapters from URLs."""
    assert isinstance(DuckDBAdapter.from_url("duckdb:///:memory:"), DuckDBAdapter)
    assert isinstance(DuckDBAdapter.from_url("duckdb://"), DuckDBAdapter)

    path = tmp_path / "file.duckdb"
    adapter = adapter_from_url(f"duckdb:///{path}")
    adapter.execute("CREATE TABLE t (id INTEGER)")
    adapter.close()
    assert path.exists()

    with pytest.raises(ValueError, match="Invalid DuckDB URL"):
        DuckDBAdapter.from_url("sqlite:///x.db")


def test_unsupported_url():
    """Test unknown schemes are rejected."""
    with pytest.raises(NotImplementedError):
        adapter_from_url("mysql://localhost/db")


def test_validate_identifier():
    """Test identifier validation."""
    assert validate_identifier("schema.table") == "schema.table"
    with pytest.raises(ValueError, match="cannot be empty"):
        validate_identifier("")
    with pytest.raises(ValueError, match="Invalid column"):
        validate_identifier("a-b", "column")
