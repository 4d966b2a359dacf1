"""
Storage interfaces for the publication registry.

These ABC interfaces allow the registry to work with different storage backends:
- SQLite (stdlib ``sqlite3``) for testing/development
- SQLModel sessions for production (PostgreSQL)

All implementations return the domain models from entity.py, converting
persistence rows through mapper.py. Writes only happen inside
``RegistryStorageInterface.transaction()``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Optional

# Use string annotations for forward references to avoid import issues
if TYPE_CHECKING:
    from pub_registry.entity import (
        AuthorLink,
        Category,
        EditActivity,
        EditLogEntry,
        MatchKey,
        Person,
        PublicationRecord,
        PublicationRow,
        SearchFilters,
        StatusHistoryEntry,
        Venue,
    )

# Bound on ids per IN (...) clause; SQLite caps bound parameters per statement.
ID_CHUNK_SIZE = 500


def chunked(ids: Iterable[int], size: int = ID_CHUNK_SIZE):
    batch = list(ids)
    for start in range(0, len(batch), size):
        yield batch[start : start + size]


def like_pattern(term: str) -> str:
    """Substring pattern for a case-insensitive LIKE with ``\\`` as escape."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PublicationStorageInterface(ABC):
    """Abstract interface for publication rows."""

    @abstractmethod
    def add(self, values: dict) -> int:
        """Insert a publication from column values and return its new pub_id."""
        pass

    @abstractmethod
    def get(self, pub_id: int) -> Optional["PublicationRecord"]:
        """Get a publication by ID."""
        pass

    @abstractmethod
    def update(self, pub_id: int, values: dict) -> None:
        """Write the given columns and bump ``updated_at``."""
        pass

    @abstractmethod
    def delete(self, pub_id: int) -> None:
        """Delete the publication row only. Callers remove dependents first."""
        pass

    @abstractmethod
    def find_duplicate(
        self,
        title: Optional[str],
        year: Optional[int],
        link_url: Optional[str],
        venue_name: Optional[str] = None,
        match_venue: bool = False,
    ) -> Optional[int]:
        """Return the id of an existing publication the new one would duplicate."""
        pass

    @property
    @abstractmethod
    def publication_count(self) -> int:
        """Total number of publications in storage."""
        pass


class PersonStorageInterface(ABC):
    """Abstract interface for person records."""

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[int]:
        """Case-sensitive email match; lowest person_id wins."""
        pass

    @abstractmethod
    def find_by_name(self, full_name: str, person_type: Optional[str] = None) -> Optional[int]:
        """Exact full-name match, narrowed by person_type when given."""
        pass

    @abstractmethod
    def add(self, person: "Person") -> int:
        pass

    @abstractmethod
    def get(self, person_id: int) -> Optional["Person"]:
        pass

    @abstractmethod
    def link_user(self, person_id: int, user_id: int) -> None:
        """Attach a system account to a person that has none."""
        pass

    @abstractmethod
    def search(self, q: str, limit: int) -> list["Person"]:
        """Case-insensitive substring match on full_name, ordered by name."""
        pass


class CategoryStorageInterface(ABC):
    """Abstract interface for the category catalogue."""

    @abstractmethod
    def find_by_name(self, name: str) -> Optional["Category"]:
        pass

    @abstractmethod
    def get(self, category_id: int) -> Optional["Category"]:
        pass

    @abstractmethod
    def add(self, name: str, status: str = "ACTIVE") -> int:
        pass

    @abstractmethod
    def list(self, q: Optional[str] = None) -> list["Category"]:
        """List categories by name, optionally filtered by a substring."""
        pass

    @abstractmethod
    def set_status(self, category_id: int, status: str) -> None:
        pass


class VenueStorageInterface(ABC):
    """Abstract interface for the venue catalogue."""

    @abstractmethod
    def add(self, venue: "Venue") -> int:
        pass

    @abstractmethod
    def get(self, venue_id: int) -> Optional["Venue"]:
        pass

    @abstractmethod
    def list(self, q: Optional[str] = None) -> list["Venue"]:
        pass


class RelationStorageInterface(ABC):
    """Authorship and category-assignment rows of publications."""

    @abstractmethod
    def replace_authors(self, pub_id: int, rows: list[tuple[int, int, Optional[str]]]) -> None:
        """Delete all authorships of ``pub_id`` then insert ``(person_id, author_order, role)`` rows."""
        pass

    @abstractmethod
    def replace_categories(self, pub_id: int, category_ids: list[int]) -> None:
        """Delete all category assignments of ``pub_id`` then insert the given ones."""
        pass

    @abstractmethod
    def authors_for(self, pub_ids: Iterable[int]) -> dict[int, list["AuthorLink"]]:
        """Authors of each publication ordered by author_order."""
        pass

    @abstractmethod
    def categories_for(self, pub_ids: Iterable[int]) -> dict[int, list[str]]:
        """Category names of each publication ordered by name."""
        pass

    @abstractmethod
    def delete_for_publication(self, pub_id: int) -> None:
        pass


class LedgerStorageInterface(ABC):
    """Append-only status history and edit log."""

    @abstractmethod
    def append_status(self, pub_id: int, status: str, changed_by: Optional[int], note: Optional[str]) -> "StatusHistoryEntry":
        pass

    @abstractmethod
    def status_history(self, pub_id: int) -> list["StatusHistoryEntry"]:
        """All status rows of a publication, oldest first."""
        pass

    @abstractmethod
    def append_edits(self, entries: list["EditLogEntry"]) -> None:
        pass

    @abstractmethod
    def edit_history(self, pub_id: int, limit: Optional[int] = None, newest_first: bool = True) -> list["EditLogEntry"]:
        pass

    @abstractmethod
    def edit_activity(
        self,
        q: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 200,
    ) -> list["EditActivity"]:
        """Edit-log entries across all publications, newest first."""
        pass

    @abstractmethod
    def delete_for_publication(self, pub_id: int) -> None:
        pass


class CriteriaResolverInterface(ABC):
    """
    Set-returning lookups the criteria engine composes.

    Every method returns publication ids (or match keys) and never raises for
    odd filter values: unknown values simply match nothing.
    """

    @abstractmethod
    def ids_for_author_term(self, term: str) -> set[int]:
        """Publications with an author whose name contains ``term`` (case-insensitive)."""
        pass

    @abstractmethod
    def ids_for_category_term(self, term: str) -> set[int]:
        """Publications assigned an ACTIVE category whose name contains ``term``."""
        pass

    @abstractmethod
    def ids_for_user(self, user_id: int, lead_only: bool = False) -> set[int]:
        """
        Publications of a user: owned or authored by a person linked to the
        user, or only those where a linked person is the LEAD author.
        """
        pass

    @abstractmethod
    def ids_with_person_type(self, person_type: str) -> set[int]:
        pass

    @abstractmethod
    def match_scalar_filters(self, filters: "SearchFilters") -> list["MatchKey"]:
        """
        Apply status, level, year range, attachment, venue type and the
        title-side free text. Author-scope text is left to the engine.
        """
        pass

    @abstractmethod
    def fetch_summaries(self, pub_ids: Iterable[int]) -> dict[int, "PublicationRow"]:
        """Search rows (without authors and categories) keyed by pub_id."""
        pass


class AttachmentStoreInterface(ABC):
    """Blob storage for uploaded PDFs. Lives outside the registry."""

    @abstractmethod
    def remove(self, path: str) -> None:
        pass


class RegistryStorageInterface(ABC):
    """Combined interface for all registry storage needs.

    This is the main interface that the registry should use.
    It combines the row stores, the ledgers and the criteria resolver with
    transaction control.
    """

    @property
    @abstractmethod
    def publications(self) -> PublicationStorageInterface:
        pass

    @property
    @abstractmethod
    def persons(self) -> PersonStorageInterface:
        pass

    @property
    @abstractmethod
    def categories(self) -> CategoryStorageInterface:
        pass

    @property
    @abstractmethod
    def venues(self) -> VenueStorageInterface:
        pass

    @property
    @abstractmethod
    def relations(self) -> RelationStorageInterface:
        pass

    @property
    @abstractmethod
    def ledger(self) -> LedgerStorageInterface:
        pass

    @property
    @abstractmethod
    def criteria(self) -> CriteriaResolverInterface:
        pass

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """
        Run the enclosed writes atomically. Nested calls join the outer
        transaction. Driver errors surface as ``StoreError``.
        """
        pass

    @abstractmethod
    def savepoint(self) -> AbstractContextManager:
        """
        Scope whose writes are undone if it raises, without aborting the
        enclosing transaction. The exception still propagates.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close connections and clean up resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
