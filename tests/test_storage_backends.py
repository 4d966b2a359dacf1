"""
Tests for the storage backends: transaction and savepoint semantics, the
session context manager, and error translation.

Run with: pytest tests/test_storage_backends.py -v
"""

from unittest.mock import MagicMock, Mock

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from pub_registry.entity import EditLogEntry, Venue
from pub_registry.errors import StoreError
from pub_registry.base import VenueType, utcnow
from pub_registry.storage.backends.postgres import PostgresRegistryStorage
from pub_registry.storage.backends.sqlite import SQLiteRegistryStorage
from pub_registry.storage.interfaces import chunked, like_pattern


def add_pub(storage, title):
    return storage.publications.add({"title": title, "status": "draft", "has_attachment": False})


class TestHelpers:
    def test_like_pattern_escapes_wildcards(self):
        assert like_pattern("100%_a\\b") == "%100\\%\\_a\\\\b%"

    def test_chunked(self):
        assert list(chunked(range(5), size=2)) == [[0, 1], [2, 3], [4]]
        assert list(chunked([])) == []


class TestTransactions:
    def test_commit(self, storage):
        with storage.transaction():
            pub_id = add_pub(storage, "A")

        assert storage.publications.get(pub_id).title == "A"

    def test_error_rolls_back_everything(self, storage):
        with pytest.raises(RuntimeError):
            with storage.transaction():
                add_pub(storage, "A")
                raise RuntimeError("boom")

        assert storage.publications.publication_count == 0

    def test_nested_transactions_join_the_outer_one(self, storage):
        with pytest.raises(RuntimeError):
            with storage.transaction():
                with storage.transaction():
                    add_pub(storage, "inner")
                add_pub(storage, "outer")
                raise RuntimeError("boom")

        assert storage.publications.publication_count == 0

    def test_savepoint_failure_keeps_outer_writes(self, storage):
        with storage.transaction():
            pub_id = add_pub(storage, "A")
            with pytest.raises(RuntimeError):
                with storage.savepoint():
                    storage.ledger.append_edits(
                        [EditLogEntry(pub_id=pub_id, field_name="title", old_value=None, new_value="A", edited_at=utcnow())]
                    )
                    raise RuntimeError("audit down")

        assert storage.publications.get(pub_id) is not None
        assert storage.ledger.edit_history(pub_id) == []

    def test_savepoint_success(self, storage):
        with storage.transaction():
            pub_id = add_pub(storage, "A")
            with storage.savepoint():
                storage.ledger.append_status(pub_id, "under_review", 1, "ok")

        assert [h.note for h in storage.ledger.status_history(pub_id)] == ["ok"]

    def test_venue_round_trip(self, storage):
        with storage.transaction():
            venue_id = storage.venues.add(Venue(type=VenueType.BOOK, name="Proceedings"))

        assert storage.venues.get(venue_id) == Venue(venue_id=venue_id, type=VenueType.BOOK, name="Proceedings")
        assert storage.venues.get(venue_id + 1) is None


class TestSQLiteBackend:
    def test_driver_errors_become_store_errors(self):
        storage = SQLiteRegistryStorage(":memory:")
        try:
            with pytest.raises(StoreError):
                with storage.transaction():
                    storage.conn.execute("SELECT * FROM no_such_table")
        finally:
            storage.close()

    def test_file_database_persists(self, tmp_path):
        db_file = tmp_path / "registry.db"
        with SQLiteRegistryStorage(db_file) as storage:
            with storage.transaction():
                add_pub(storage, "Persisted")

        with SQLiteRegistryStorage(db_file) as storage:
            assert storage.publications.publication_count == 1

    def test_casefold_matching_is_unicode_aware(self):
        with SQLiteRegistryStorage(":memory:") as storage:
            with storage.transaction():
                pub_id = add_pub(storage, "Über Graphen")

            assert storage.publications.find_duplicate("ÜBER GRAPHEN", None, None) == pub_id


class TestPostgresContextManager:
    """Session handling of the SQLModel backend."""

    @pytest.fixture
    def mock_session(self):
        session = MagicMock(spec=Session)
        session.commit = Mock()
        session.close = Mock()
        session.rollback = Mock()
        return session

    def test_context_manager_enter_returns_storage(self, mock_session):
        storage = PostgresRegistryStorage(mock_session)

        with storage as s:
            assert s is storage
            assert s.session is mock_session

    def test_context_manager_commits_and_closes(self, mock_session):
        with PostgresRegistryStorage(mock_session):
            pass

        mock_session.commit.assert_called_once()
        mock_session.close.assert_called_once()

    def test_context_manager_rolls_back_on_error(self, mock_session):
        with pytest.raises(ValueError):
            with PostgresRegistryStorage(mock_session):
                raise ValueError("boom")

        mock_session.rollback.assert_called_once()
        mock_session.commit.assert_not_called()
        mock_session.close.assert_called_once()

    def test_transaction_translates_driver_errors(self, mock_session):
        storage = PostgresRegistryStorage(mock_session)
        mock_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("server closed the connection"))

        with pytest.raises(StoreError):
            with storage.transaction():
                pass

        mock_session.rollback.assert_called_once()

    def test_nested_transaction_commits_once(self, mock_session):
        storage = PostgresRegistryStorage(mock_session)

        with storage.transaction():
            with storage.transaction():
                pass

        mock_session.commit.assert_called_once()
