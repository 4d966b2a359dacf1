"""
Global fixtures for the test suite.

This `conftest.py` file provides fixtures that are available to all tests
in the `tests/` directory and its subdirectories.

Fixtures:
- `storage`: a fresh registry storage, parametrized over both backends
  (raw sqlite3 and the SQLModel session backend on in-memory SQLite), so
  every test that uses it runs twice.
- `registry`: a `PublicationRegistry` over `storage` with default settings.
- `prof`, `other_prof`, `staff`: actors as issued by the identity provider.
- `submit`: a helper that submits a publication and returns its id.

Example:
    def test_something(registry, prof, submit):
        pub_id = submit(prof, "On Graphs", 2021, authors=["A. Smith"])
        assert registry.get_publication(pub_id).title == "On Graphs"

Run all tests with:
    pytest -v
"""

import pytest
from sqlmodel import Session, SQLModel

from pub_registry.base import UserRole
from pub_registry.config import Settings
from pub_registry.entity import Actor
from pub_registry.query.storage_factory import make_engine
from pub_registry.registry import PublicationRegistry
from pub_registry.storage.backends.postgres import PostgresRegistryStorage
from pub_registry.storage.backends.sqlite import SQLiteRegistryStorage


@pytest.fixture(params=["sqlite", "sqlmodel"])
def storage(request):
    """Empty registry storage on each backend."""
    if request.param == "sqlite":
        storage = SQLiteRegistryStorage(":memory:")
        yield storage
        storage.close()
        return

    engine = make_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    storage = PostgresRegistryStorage(Session(engine))
    yield storage
    storage.close()
    engine.dispose()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def registry(storage, settings):
    return PublicationRegistry(storage, settings)


@pytest.fixture
def prof():
    return Actor(user_id=7, role=UserRole.PROFESSOR)


@pytest.fixture
def other_prof():
    return Actor(user_id=8, role=UserRole.PROFESSOR)


@pytest.fixture
def staff():
    return Actor(user_id=1, role=UserRole.STAFF)


@pytest.fixture
def submit(registry):
    """
    Submit a publication. ``authors`` may be plain names or author dicts;
    extra keyword arguments become publication fields.
    """

    def _submit(owner, title, year=None, authors=(), categories=(), **fields):
        author_list = [{"full_name": a} if isinstance(a, str) else a for a in authors]
        return registry.submit_publication(owner, {"title": title, "year": year, **fields}, author_list, list(categories))

    return _submit
