"""Test loading entity declarations from YAML."""

import pytest

from relquery.loaders import load_entities, parse_entities, substitute_env_vars
from relquery.validation import EntityValidationError


def test_parse_entities():
    """Test entity and relation parsing."""
    entities = parse_entities(
        """
entities:
  - name: user
    table: users
    strict_mode: true
    allowed_lazy: [profile]
    relations:
      - name: profile
        kind: one_to_one
        target: profile
      - name: roles
        kind: many_to_many
        target: role
        pivot_table: role_user
        pivot_source_key: user_id
        pivot_target_key: role_id
"""
    )

    assert len(entities) == 1
    user = entities[0]
    assert user.strict_mode
    assert user.allowed_lazy == ["profile"]
    assert [r.name for r in user.relations] == ["profile", "roles"]
    assert user.get_relation("roles").pivot_table == "role_user"
    assert not user.is_tenant_scoped


def test_tenant_scoped_shorthand():
    """Test tenant_scoped uses the configured default column."""
    entities = parse_entities(
        """
entities:
  - name: project
    table: projects
    tenant_scoped: true
  - name: invoice
    table: invoices
    tenant_column: account_id
""",
        default_tenant_column="org_id",
    )

    assert entities[0].tenant_column == "org_id"
    assert entities[1].tenant_column == "account_id"


def test_env_var_substitution(monkeypatch):
    """Test ${VAR} and ${VAR:-default} substitution."""
    monkeypatch.setenv("APP_SCHEMA", "analytics")
    monkeypatch.delenv("UNSET_VAR", raising=False)

    assert substitute_env_vars("table: ${APP_SCHEMA}.projects") == "table: analytics.projects"
    assert substitute_env_vars("table: ${UNSET_VAR:-public}.projects") == "table: public.projects"
    assert substitute_env_vars("table: ${UNSET_VAR}") == "table: ${UNSET_VAR}"

    entities = parse_entities("entities:\n  - name: project\n    table: ${APP_SCHEMA}.projects\n")
    assert entities[0].table == "analytics.projects"


def test_invalid_documents():
    """Test malformed declarations raise EntityValidationError."""
    with pytest.raises(EntityValidationError, match="'entities' list"):
        parse_entities("entities: project")

    with pytest.raises(EntityValidationError, match="project"):
        parse_entities(
            "entities:\n  - name: project\n    table: projects\n    relations:\n"
            "      - name: tasks\n        kind: one_to_few\n"
        )

    with pytest.raises(EntityValidationError):
        parse_entities("entities:\n  - name: project\n")


def test_empty_document():
    """Test an empty document declares nothing."""
    assert parse_entities("") == []


def test_load_entities(tmp_path):
    """Test loading from a file."""
    path = tmp_path / "entities.yaml"
    path.write_text("entities:\n  - name: task\n    table: tasks\n")

    assert [e.name for e in load_entities(path)] == ["task"]

    with pytest.raises(FileNotFoundError):
        load_entities(tmp_path / "missing.yaml")
