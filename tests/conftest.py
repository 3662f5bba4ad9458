"""Pytest configuration and fixtures."""

import pytest

from tests.utils import build_session


@pytest.fixture
def session():
    """Seeded session with tenant 1 as the current tenant."""
    session = build_session()
    yield session
    session.close()


@pytest.fixture
def unscoped_session():
    """Seeded session with no tenant context."""
    session = build_session(tenant=None)
    yield session
    session.close()
