"""Test the count cache pass-through hook."""

from relquery.config import CacheSettings
from tests.utils import DictCache, build_session


def test_counts_are_served_from_cache():
    """Test cacheable count queries hit the collaborator once."""
    cache = DictCache()
    session = build_session(cache=cache, cache_settings=CacheSettings(enabled=True, ttl=30))

    assert session.query("task").count() == 4
    assert session.query("task").count() == 4

    assert session.query_count == 1
    assert len(cache.sets) == 1
    key, ttl = cache.sets[0]
    assert key.startswith("relquery:")
    assert ttl == 30
    session.close()


def test_with_count_uses_cache():
    """Test relation count aggregates are cacheable."""
    cache = DictCache()
    session = build_session(cache=cache, cache_settings=CacheSettings(enabled=True))

    session.query("project").order_by("id").with_count("tasks").all()
    session.reset_query_log()
    projects = session.query("project").order_by("id").with_count("tasks").all()

    assert [p["tasks_count"] for p in projects] == [2, 0, 1]
    assert session.query_count == 1
    session.close()


def test_cache_disabled():
    """Test the collaborator is bypassed when caching is disabled."""
    cache = DictCache()
    session = build_session(cache=cache)

    session.query("task").count()
    session.query("task").count()

    assert session.query_count == 2
    assert cache.sets == []
    session.close()


def test_rows_are_never_cached():
    """Test entity queries always go to the backend."""
    cache = DictCache()
    session = build_session(cache=cache, cache_settings=CacheSettings(enabled=True))

    session.query("task").all()
    session.query("task").all()

    assert session.query_count == 2
    assert cache.sets == []
    session.close()


def test_cache_keys_differ_per_tenant():
    """Test tenant-scoped counts do not share cache entries across tenants."""
    cache = DictCache()
    session = build_session(cache=cache, cache_settings=CacheSettings(enabled=True))

    assert session.query("project").count() == 3
    session.tenant.set(2)
    assert session.query("project").count() == 1
    assert len(cache.sets) == 2
    session.close()
