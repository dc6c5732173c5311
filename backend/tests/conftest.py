"""Shared test fixtures."""
import os

# Must be set before splitlab.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BAYESIAN_SIMULATIONS"] = "2000"

import pytest
from fastapi.testclient import TestClient

from fakes import InMemoryRepository
from splitlab.models.ab_test import AssignmentType
from splitlab.schemas.ab_test import ABTestCreate
from splitlab.services.lifecycle import TestLifecycleManager
from splitlab.services.repository import SqlAlchemyRepository


@pytest.fixture
def db():
    """Create test database session."""
    from splitlab.database import SessionLocal, engine, Base
    import splitlab.models  # noqa: F401

    # Create tables
    Base.metadata.create_all(bind=engine)

    # Create session
    session = SessionLocal()

    yield session

    # Cleanup
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sql_repository(db):
    """Repository on the SQLite test session."""
    return SqlAlchemyRepository(db)


@pytest.fixture
def memory_repository():
    """In-memory repository."""
    return InMemoryRepository()


@pytest.fixture(params=["memory", "sql"])
def repository(request):
    """Run a test against both repository implementations."""
    if request.param == "memory":
        return InMemoryRepository()
    return SqlAlchemyRepository(request.getfixturevalue("db"))


@pytest.fixture
def make_test():
    """
    Factory for tests in a given state.

    Usage:
        test = make_test(repository, assignment_type=AssignmentType.ALTERNATING)
    """
    def _make(repository, start=True, counts=None, **overrides):
        config = {
            "name": "Hero headline",
            "url": "/quote",
            "assignment_type": AssignmentType.ALTERNATING,
            "variant_a_content": {"headline": "A"},
            "variant_b_content": {"headline": "B"},
        }
        config.update(overrides)

        lifecycle = TestLifecycleManager(repository)
        test = lifecycle.create_test(ABTestCreate(**config))
        test_id = test.id
        if start:
            lifecycle.start_test(test_id)
        if counts:
            repository.update_test(test_id, counts)
        return repository.get_test(test_id)

    return _make


@pytest.fixture
def client(db):
    """Test client with the database dependency overridden."""
    from splitlab.database import get_db
    from splitlab.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
