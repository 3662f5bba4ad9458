"""Test configuration files and Session.from_config."""

import json

import pytest
from pydantic import ValidationError

from relquery import Session
from relquery.config import (
    CacheSettings,
    DuckDBConnection,
    PostgreSQLConnection,
    RelqueryConfig,
    build_connection_string,
    find_config,
    load_config,
)

ENTITIES_YAML = """
entities:
  - name: project
    table: projects
    tenant_scoped: true
    relations:
      - name: tasks
        kind: one_to_many
        target: task
  - name: task
    table: tasks
"""


def test_load_yaml_config(tmp_path):
    """Test YAML config loading resolves relative paths."""
    config_file = tmp_path / "relquery.yaml"
    config_file.write_text(
        """
entities_path: entities.yaml
tenant_column: org_id
connection:
  type: duckdb
  path: data/app.db
cache:
  enabled: true
  ttl: 300
"""
    )

    config = load_config(config_file)

    assert config.entities_path == str((tmp_path / "entities.yaml").resolve())
    assert config.connection.path == str((tmp_path / "data/app.db").resolve())
    assert config.tenant_column == "org_id"
    assert config.cache == CacheSettings(enabled=True, ttl=300)


def test_load_json_config(tmp_path):
    """Test JSON config loading."""
    config_file = tmp_path / "relquery.json"
    config_file.write_text(json.dumps({"connection": {"type": "duckdb", "path": ":memory:"}}))

    config = load_config(config_file)

    assert config.connection.path == ":memory:"
    assert config.cache.enabled is False
    assert config.tenant_column == "tenant_id"


def test_empty_config(tmp_path):
    """Test an empty file gives defaults."""
    config_file = tmp_path / "relquery.yml"
    config_file.write_text("")

    assert load_config(config_file) == RelqueryConfig()


def test_config_errors(tmp_path):
    """Test missing files, unknown formats and invalid values."""
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

    toml_file = tmp_path / "relquery.toml"
    toml_file.write_text("")
    with pytest.raises(ValueError, match="Unsupported config format"):
        load_config(toml_file)

    bad = tmp_path / "relquery.yaml"
    bad.write_text("cache:\n  ttl: -1\n")
    with pytest.raises(ValidationError):
        load_config(bad)


def test_find_config(tmp_path):
    """Test the config file is found by walking up directories."""
    (tmp_path / "relquery.yaml").write_text("tenant_column: org_id\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert find_config(nested) == (tmp_path / "relquery.yaml").resolve()


def test_build_connection_string():
    """Test connection URLs for each backend."""
    assert build_connection_string(RelqueryConfig()) == "duckdb:///:memory:"
    assert (
        build_connection_string(RelqueryConfig(connection=DuckDBConnection(path="/tmp/app.db")))
        == "duckdb:////tmp/app.db"
    )
    postgres = PostgreSQLConnection(host="db", database="app", username="svc", password="pw")
    assert build_connection_string(RelqueryConfig(connection=postgres)) == "postgres://svc:pw@db:5432/app"
    no_password = PostgreSQLConnection(host="db", port=6432, database="app", username="svc")
    assert build_connection_string(RelqueryConfig(connection=no_password)) == "postgres://svc@db:6432/app"


def test_session_from_config(tmp_path):
    """Test building a session with entity declarations from config."""
    (tmp_path / "entities.yaml").write_text(ENTITIES_YAML)
    config_file = tmp_path / "relquery.yaml"
    config_file.write_text(
        "entities_path: entities.yaml\ncache:\n  enabled: true\n  ttl: 30\nconnection:\n  type: duckdb\n  path: app.db\n"
    )

    with Session.from_config(config_file) as session:
        assert session.registry.get_entity("project").tenant_column == "tenant_id"
        assert session.cache_settings.ttl == 30

        session.execute("CREATE TABLE projects (id INTEGER, tenant_id INTEGER, title VARCHAR)")
        session.execute("CREATE TABLE tasks (id INTEGER, project_id INTEGER)")
        session.execute("INSERT INTO projects VALUES (1, 7, 'Scoped')")
        session.tenant.set(7)

        project = session.query("project").with_("tasks").one()
        assert project["title"] == "Scoped"
        assert project.relation("tasks") == []

    assert (tmp_path / "app.db").exists()
