"""
PostgreSQL implementation of the registry storage interfaces.

This implementation uses SQLModel persistence models on a ``Session`` and
mapper functions for domain <-> persistence conversion. Nothing in it is
PostgreSQL-specific, so the same code runs against any SQLAlchemy engine
(the test suite uses in-memory SQLite).
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from pub_registry.base import SearchScope, utcnow
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
from pub_registry.errors import StoreError
from pub_registry.mapper import (
    category_to_domain,
    column_value,
    edit_entry_to_domain,
    person_to_domain,
    publication_to_domain,
    status_entry_to_domain,
    venue_to_domain,
)
from pub_registry.storage.interfaces import (
    CategoryStorageInterface,
    CriteriaResolverInterface,
    LedgerStorageInterface,
    PersonStorageInterface,
    PublicationStorageInterface,
    RegistryStorageInterface,
    RelationStorageInterface,
    VenueStorageInterface,
    chunked,
    like_pattern,
)
from pub_registry.storage.models.ledger import EditLog as EditLogTable
from pub_registry.storage.models.ledger import StatusHistory as StatusHistoryTable
from pub_registry.storage.models.publication import Authorship as AuthorshipTable
from pub_registry.storage.models.publication import Category as CategoryTable
from pub_registry.storage.models.publication import CategoryAssignment as CategoryAssignmentTable
from pub_registry.storage.models.publication import Person as PersonTable
from pub_registry.storage.models.publication import Publication as PublicationTable
from pub_registry.storage.models.publication import Venue as VenueTable

logger = logging.getLogger(__name__)

PUBLICATION_COLUMNS = (
    "title",
    "venue_id",
    "venue_name",
    "level",
    "year",
    "abstract",
    "link_url",
    "has_attachment",
    "attachment_path",
    "status",
    "owner_user_id",
)


def _ilike(column, term: str):
    return col(column).ilike(like_pattern(term), escape="\\")


def _delete_all(session: Session, statement) -> None:
    for row in session.exec(statement).all():
        session.delete(row)
    session.flush()


class PostgresPublicationStorage(PublicationStorageInterface):
    """PostgreSQL implementation of publication storage."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, values: dict) -> int:
        persistence = PublicationTable(**{c: values[c] for c in PUBLICATION_COLUMNS if c in values})
        self.session.add(persistence)
        self.session.flush()
        return persistence.pub_id

    def get(self, pub_id: int) -> Optional[PublicationRecord]:
        persistence = self.session.get(PublicationTable, pub_id)
        if not persistence:
            return None
        return publication_to_domain(persistence)

    def update(self, pub_id: int, values: dict) -> None:
        persistence = self.session.get(PublicationTable, pub_id)
        if not persistence:
            return
        for column in PUBLICATION_COLUMNS:
            if column in values:
                setattr(persistence, column, values[column])
        persistence.updated_at = utcnow()
        self.session.add(persistence)
        self.session.flush()

    def delete(self, pub_id: int) -> None:
        persistence = self.session.get(PublicationTable, pub_id)
        if persistence:
            self.session.delete(persistence)
            self.session.flush()

    def find_duplicate(
        self,
        title: Optional[str],
        year: Optional[int],
        link_url: Optional[str],
        venue_name: Optional[str] = None,
        match_venue: bool = False,
    ) -> Optional[int]:
        if link_url:
            statement = select(PublicationTable.pub_id).where(PublicationTable.link_url == link_url).order_by(PublicationTable.pub_id)
            found = self.session.exec(statement.limit(1)).first()
            if found is not None:
                return found
        if title:
            year_clause = col(PublicationTable.year).is_(None) if year is None else PublicationTable.year == year
            statement = select(PublicationTable.pub_id).where(
                func.lower(PublicationTable.title) == title.lower(),
                year_clause,
            )
            if match_venue:
                statement = statement.where(func.lower(func.coalesce(PublicationTable.venue_name, "")) == (venue_name or "").lower())
            found = self.session.exec(statement.order_by(PublicationTable.pub_id).limit(1)).first()
            if found is not None:
                return found
        return None

    @property
    def publication_count(self) -> int:
        return self.session.exec(select(func.count()).select_from(PublicationTable)).one()


class PostgresPersonStorage(PersonStorageInterface):
    """PostgreSQL implementation of person storage."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_email(self, email: str) -> Optional[int]:
        statement = select(PersonTable.person_id).where(PersonTable.email == email).order_by(PersonTable.person_id)
        return self.session.exec(statement.limit(1)).first()

    def find_by_name(self, full_name: str, person_type: Optional[str] = None) -> Optional[int]:
        statement = select(PersonTable.person_id).where(PersonTable.full_name == full_name)
        if person_type:
            statement = statement.where(PersonTable.person_type == person_type)
        return self.session.exec(statement.order_by(PersonTable.person_id).limit(1)).first()

    def add(self, person: Person) -> int:
        persistence = PersonTable(
            full_name=person.full_name,
            email=person.email,
            affiliation=person.affiliation,
            person_type=column_value(person.person_type),
            user_id=person.user_id,
        )
        self.session.add(persistence)
        self.session.flush()
        return persistence.person_id

    def get(self, person_id: int) -> Optional[Person]:
        persistence = self.session.get(PersonTable, person_id)
        return person_to_domain(persistence) if persistence else None

    def link_user(self, person_id: int, user_id: int) -> None:
        persistence = self.session.get(PersonTable, person_id)
        if persistence and persistence.user_id is None:
            persistence.user_id = user_id
            self.session.add(persistence)
            self.session.flush()

    def search(self, q: str, limit: int) -> list[Person]:
        statement = (
            select(PersonTable)
            .where(_ilike(PersonTable.full_name, q))
            .order_by(PersonTable.full_name, PersonTable.person_id)
            .limit(limit)
        )
        return [person_to_domain(p) for p in self.session.exec(statement).all()]


class PostgresCategoryStorage(CategoryStorageInterface):
    """PostgreSQL implementation of the category catalogue."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_name(self, name: str) -> Optional[Category]:
        persistence = self.session.exec(select(CategoryTable).where(CategoryTable.category_name == name)).first()
        return category_to_domain(persistence) if persistence else None

    def get(self, category_id: int) -> Optional[Category]:
        persistence = self.session.get(CategoryTable, category_id)
        return category_to_domain(persistence) if persistence else None

    def add(self, name: str, status: str = "ACTIVE") -> int:
        persistence = CategoryTable(category_name=name, status=status)
        self.session.add(persistence)
        self.session.flush()
        return persistence.category_id

    def list(self, q: Optional[str] = None) -> list[Category]:
        statement = select(CategoryTable)
        if q:
            statement = statement.where(_ilike(CategoryTable.category_name, q))
        return [category_to_domain(c) for c in self.session.exec(statement.order_by(CategoryTable.category_name)).all()]

    def set_status(self, category_id: int, status: str) -> None:
        persistence = self.session.get(CategoryTable, category_id)
        if persistence:
            persistence.status = status
            persistence.updated_at = utcnow()
            self.session.add(persistence)
            self.session.flush()


class PostgresVenueStorage(VenueStorageInterface):
    """PostgreSQL implementation of the venue catalogue."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, venue: Venue) -> int:
        persistence = VenueTable(type=column_value(venue.type), name=venue.name)
        self.session.add(persistence)
        self.session.flush()
        return persistence.venue_id

    def get(self, venue_id: int) -> Optional[Venue]:
        persistence = self.session.get(VenueTable, venue_id)
        return venue_to_domain(persistence) if persistence else None

    def list(self, q: Optional[str] = None) -> list[Venue]:
        statement = select(VenueTable)
        if q:
            statement = statement.where(_ilike(VenueTable.name, q))
        statement = statement.order_by(VenueTable.name, VenueTable.venue_id)
        return [venue_to_domain(v) for v in self.session.exec(statement).all()]


class PostgresRelationStorage(RelationStorageInterface):
    """Authorships and category assignments."""

    def __init__(self, session: Session):
        self.session = session

    def replace_authors(self, pub_id: int, rows: list[tuple[int, int, Optional[str]]]) -> None:
        _delete_all(self.session, select(AuthorshipTable).where(AuthorshipTable.pub_id == pub_id))
        self.session.add_all(
            [AuthorshipTable(pub_id=pub_id, person_id=person_id, author_order=order, role=role) for person_id, order, role in rows]
        )
        self.session.flush()

    def replace_categories(self, pub_id: int, category_ids: list[int]) -> None:
        _delete_all(self.session, select(CategoryAssignmentTable).where(CategoryAssignmentTable.pub_id == pub_id))
        unique_ids = list(dict.fromkeys(category_ids))
        self.session.add_all([CategoryAssignmentTable(pub_id=pub_id, category_id=category_id) for category_id in unique_ids])
        self.session.flush()

    def authors_for(self, pub_ids: Iterable[int]) -> dict[int, list[AuthorLink]]:
        result: dict[int, list[AuthorLink]] = {}
        for batch in chunked(pub_ids):
            statement = (
                select(AuthorshipTable, PersonTable)
                .join(PersonTable, AuthorshipTable.person_id == PersonTable.person_id)
                .where(col(AuthorshipTable.pub_id).in_(batch))
                .order_by(AuthorshipTable.pub_id, AuthorshipTable.author_order)
            )
            for authorship, person in self.session.exec(statement).all():
                result.setdefault(authorship.pub_id, []).append(
                    AuthorLink(
                        person_id=person.person_id,
                        full_name=person.full_name,
                        email=person.email,
                        affiliation=person.affiliation,
                        person_type=person.person_type,
                        author_order=authorship.author_order,
                        role=authorship.role,
                    )
                )
        return result

    def categories_for(self, pub_ids: Iterable[int]) -> dict[int, list[str]]:
        result: dict[int, list[str]] = {}
        for batch in chunked(pub_ids):
            statement = (
                select(CategoryAssignmentTable.pub_id, CategoryTable.category_name)
                .join(CategoryTable, CategoryAssignmentTable.category_id == CategoryTable.category_id)
                .where(col(CategoryAssignmentTable.pub_id).in_(batch))
                .order_by(CategoryAssignmentTable.pub_id, CategoryTable.category_name)
            )
            for pub_id, name in self.session.exec(statement).all():
                result.setdefault(pub_id, []).append(name)
        return result

    def delete_for_publication(self, pub_id: int) -> None:
        _delete_all(self.session, select(AuthorshipTable).where(AuthorshipTable.pub_id == pub_id))
        _delete_all(self.session, select(CategoryAssignmentTable).where(CategoryAssignmentTable.pub_id == pub_id))


class PostgresLedgerStorage(LedgerStorageInterface):
    """Status history and edit log."""

    def __init__(self, session: Session):
        self.session = session

    def append_status(self, pub_id: int, status: str, changed_by: Optional[int], note: Optional[str]) -> StatusHistoryEntry:
        persistence = StatusHistoryTable(pub_id=pub_id, status=status, changed_by=changed_by, note=note)
        self.session.add(persistence)
        self.session.flush()
        return status_entry_to_domain(persistence)

    def status_history(self, pub_id: int) -> list[StatusHistoryEntry]:
        statement = (
            select(StatusHistoryTable)
            .where(StatusHistoryTable.pub_id == pub_id)
            .order_by(StatusHistoryTable.changed_at, StatusHistoryTable.history_id)
        )
        return [status_entry_to_domain(h) for h in self.session.exec(statement).all()]

    def append_edits(self, entries: list[EditLogEntry]) -> None:
        self.session.add_all([EditLogTable(**entry.model_dump(exclude={"edit_id"})) for entry in entries])
        self.session.flush()

    def edit_history(self, pub_id: int, limit: Optional[int] = None, newest_first: bool = True) -> list[EditLogEntry]:
        statement = select(EditLogTable).where(EditLogTable.pub_id == pub_id)
        if newest_first:
            statement = statement.order_by(col(EditLogTable.edited_at).desc(), col(EditLogTable.edit_id).desc())
        else:
            statement = statement.order_by(EditLogTable.edited_at, EditLogTable.edit_id)
        if limit is not None:
            statement = statement.limit(limit)
        return [edit_entry_to_domain(e) for e in self.session.exec(statement).all()]

    def edit_activity(
        self,
        q: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 200,
    ) -> list[EditActivity]:
        statement = select(EditLogTable, PublicationTable.title).outerjoin(
            PublicationTable, EditLogTable.pub_id == PublicationTable.pub_id
        )
        if q:
            statement = statement.where(
                or_(
                    _ilike(EditLogTable.field_name, q),
                    _ilike(EditLogTable.old_value, q),
                    _ilike(EditLogTable.new_value, q),
                    _ilike(PublicationTable.title, q),
                )
            )
        if date_from:
            statement = statement.where(EditLogTable.edited_at >= date_from)
        if date_to:
            statement = statement.where(EditLogTable.edited_at <= date_to)
        statement = statement.order_by(col(EditLogTable.edited_at).desc(), col(EditLogTable.edit_id).desc()).limit(limit)
        return [EditActivity(**entry.model_dump(), pub_title=title) for entry, title in self.session.exec(statement).all()]

    def delete_for_publication(self, pub_id: int) -> None:
        _delete_all(self.session, select(EditLogTable).where(EditLogTable.pub_id == pub_id))
        _delete_all(self.session, select(StatusHistoryTable).where(StatusHistoryTable.pub_id == pub_id))


class PostgresCriteriaResolver(CriteriaResolverInterface):
    """Set lookups for the criteria engine, expressed as SQLModel selects."""

    def __init__(self, session: Session):
        self.session = session

    def _ids(self, statement) -> set[int]:
        return set(self.session.exec(statement).all())

    def _authored(self):
        return select(AuthorshipTable.pub_id).join(PersonTable, AuthorshipTable.person_id == PersonTable.person_id)

    def ids_for_author_term(self, term: str) -> set[int]:
        return self._ids(self._authored().where(_ilike(PersonTable.full_name, term)).distinct())

    def ids_for_category_term(self, term: str) -> set[int]:
        statement = (
            select(CategoryAssignmentTable.pub_id)
            .join(CategoryTable, CategoryAssignmentTable.category_id == CategoryTable.category_id)
            .where(CategoryTable.status == "ACTIVE", _ilike(CategoryTable.category_name, term))
            .distinct()
        )
        return self._ids(statement)

    def ids_for_user(self, user_id: int, lead_only: bool = False) -> set[int]:
        authored = self._authored().where(PersonTable.user_id == user_id)
        if lead_only:
            return self._ids(authored.where(AuthorshipTable.role == "LEAD").distinct())
        owned = select(PublicationTable.pub_id).where(PublicationTable.owner_user_id == user_id)
        return self._ids(authored.distinct()) | self._ids(owned)

    def ids_with_person_type(self, person_type: str) -> set[int]:
        return self._ids(self._authored().where(PersonTable.person_type == person_type).distinct())

    def match_scalar_filters(self, filters: SearchFilters) -> list[MatchKey]:
        statement = select(PublicationTable.pub_id, PublicationTable.year, PublicationTable.status).outerjoin(
            VenueTable, PublicationTable.venue_id == VenueTable.venue_id
        )
        if filters.statuses:
            statement = statement.where(col(PublicationTable.status).in_(filters.statuses))
        if filters.levels:
            statement = statement.where(col(PublicationTable.level).in_(filters.levels))
        if filters.year_from is not None:
            statement = statement.where(PublicationTable.year >= filters.year_from)
        if filters.year_to is not None:
            statement = statement.where(PublicationTable.year <= filters.year_to)
        if filters.has_attachment is not None:
            statement = statement.where(PublicationTable.has_attachment == filters.has_attachment)
        if filters.venue_types:
            statement = statement.where(col(VenueTable.type).in_(filters.venue_types))
        if filters.q and filters.scope != SearchScope.AUTHOR:
            if filters.scope == SearchScope.TITLE:
                statement = statement.where(_ilike(PublicationTable.title, filters.q))
            else:
                statement = statement.where(
                    or_(
                        _ilike(PublicationTable.title, filters.q),
                        _ilike(PublicationTable.venue_name, filters.q),
                        _ilike(PublicationTable.link_url, filters.q),
                    )
                )
        return [MatchKey(pub_id, year, status) for pub_id, year, status in self.session.exec(statement).all()]

    def fetch_summaries(self, pub_ids: Iterable[int]) -> dict[int, PublicationRow]:
        result: dict[int, PublicationRow] = {}
        for batch in chunked(pub_ids):
            statement = (
                select(PublicationTable, VenueTable.type)
                .outerjoin(VenueTable, PublicationTable.venue_id == VenueTable.venue_id)
                .where(col(PublicationTable.pub_id).in_(batch))
            )
            for publication, venue_type in self.session.exec(statement).all():
                result[publication.pub_id] = PublicationRow(
                    pub_id=publication.pub_id,
                    title=publication.title,
                    venue_name=publication.venue_name,
                    venue_type=venue_type,
                    level=publication.level,
                    year=publication.year,
                    status=publication.status,
                    has_attachment=publication.has_attachment,
                    link_url=publication.link_url,
                    updated_at=publication.updated_at,
                )
        return result


class PostgresRegistryStorage(RegistryStorageInterface):
    """PostgreSQL implementation of combined registry storage.

    Wraps one SQLModel session; the engine that produced it is owned by the
    caller (see ``query/storage_factory.py``).
    """

    def __init__(self, session: Session):
        """Initialize PostgreSQL storage.

        Args:
            session: an active sqlmodel session
        """
        self._session = session
        self._depth = 0

        # Initialize storage components
        self._publications = PostgresPublicationStorage(self._session)
        self._persons = PostgresPersonStorage(self._session)
        self._categories = PostgresCategoryStorage(self._session)
        self._venues = PostgresVenueStorage(self._session)
        self._relations = PostgresRelationStorage(self._session)
        self._ledger = PostgresLedgerStorage(self._session)
        self._criteria = PostgresCriteriaResolver(self._session)

    @property
    def session(self) -> Session:
        """Access to the underlying session."""
        return self._session

    @property
    def publications(self) -> PublicationStorageInterface:
        return self._publications

    @property
    def persons(self) -> PersonStorageInterface:
        return self._persons

    @property
    def categories(self) -> CategoryStorageInterface:
        return self._categories

    @property
    def venues(self) -> VenueStorageInterface:
        return self._venues

    @property
    def relations(self) -> RelationStorageInterface:
        return self._relations

    @property
    def ledger(self) -> LedgerStorageInterface:
        return self._ledger

    @property
    def criteria(self) -> CriteriaResolverInterface:
        return self._criteria

    @contextmanager
    def transaction(self):
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error("Database transaction failed: %s", exc)
            raise StoreError(str(exc)) from exc
        except BaseException:
            self._session.rollback()
            raise
        finally:
            self._depth = 0

    @contextmanager
    def savepoint(self):
        with self._session.begin_nested():
            yield self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._session.rollback()
            else:
                self._session.commit()
        finally:
            self._session.close()
        return False

    def close(self) -> None:
        """Close the session. The engine stays with its owner."""
        self._session.close()
