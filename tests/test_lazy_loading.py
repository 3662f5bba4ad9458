"""Test lazy loading, the relation cache and strict mode."""

import pytest

from relquery import ConfigurationError, Entity, StrictModeViolation, TransportError
from relquery.core.entity import LoadState


def test_lazy_load_runs_once(session):
    """Test first access loads with one query and later access is cached."""
    project = session.find("project", 1)
    session.reset_query_log()

    tasks = project.relation("tasks")
    assert [t["title"] for t in tasks] == ["Design", "Build"]
    assert session.query_count == 1

    assert project.relation("tasks") is tasks
    assert session.query_count == 1
    assert project.relations.state("tasks") is LoadState.LOADED


def test_lazy_load_to_one_missing(session):
    """Test a missing to-one relation is cached as None."""
    user = session.find("user", 3)
    session.reset_query_log()

    assert user.relation("profile") is None
    assert user.relation_loaded("profile")
    assert user.relation("profile") is None
    assert session.query_count == 1


def test_strict_mode_blocks_unlisted_relation(session):
    """Test strict mode raises for relations outside allowed_lazy."""
    user = session.find("user", 1)
    session.reset_query_log()

    with pytest.raises(StrictModeViolation) as exc_info:
        user.relation("roles")

    assert exc_info.value.entity_type == "user"
    assert exc_info.value.relation == "roles"
    assert "user" in str(exc_info.value) and "roles" in str(exc_info.value)
    assert user.relations.state("roles") is LoadState.ERRORED
    assert session.query_count == 0


def test_strict_mode_allows_listed_relation(session):
    """Test an allow-listed relation lazy loads with exactly one extra query."""
    user = session.find("user", 1)
    session.reset_query_log()

    profile = user.relation("profile")

    assert profile["bio"] == "Alice bio"
    assert session.query_count == 1


def test_strict_mode_allows_eager_loaded_relation(session):
    """Test strict mode does not affect relations loaded eagerly."""
    user = session.query("user").where("id", 1).with_("roles").one()
    session.reset_query_log()

    assert [r["name"] for r in user.relation("roles")] == ["admin", "editor"]
    assert session.query_count == 0


def test_lazy_load_unknown_relation(session):
    """Test lazily accessing an unregistered relation is a configuration error."""
    project = session.find("project", 1)

    with pytest.raises(ConfigurationError, match="nonexistent"):
        project.relation("nonexistent")


def test_detached_entity_cannot_lazy_load(session):
    """Test an entity without a session cannot lazy load."""
    entity = Entity(session.registry.get_entity("project"), {"id": 1})

    with pytest.raises(ConfigurationError, match="not attached to a session"):
        entity.relation("tasks")


def test_failed_lazy_load_resets_state(session):
    """Test a transport failure propagates and leaves the relation unloaded."""
    task = session.find("task", 1)
    session.execute("DROP TABLE comments")

    with pytest.raises(TransportError):
        task.relation("comments")

    assert task.relations.state("comments") is LoadState.UNLOADED
    assert not task.relation_loaded("comments")


def test_forget_allows_refetch(session):
    """Test forgetting a cached relation triggers a fresh load."""
    project = session.find("project", 1)
    project.relation("tasks")
    session.execute("INSERT INTO tasks VALUES (50, 1, 'Ship')")
    session.reset_query_log()

    assert len(project.relation("tasks")) == 2
    project.relations.forget("tasks")

    assert len(project.relation("tasks")) == 3
    assert session.query_count == 1
