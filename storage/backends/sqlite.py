"""
SQLite implementation of the registry storage interfaces.

This implementation uses the stdlib ``sqlite3`` driver for testing and
development. The connection runs in autocommit mode and transactions are
issued explicitly, so nested savepoints behave the same way they do on
PostgreSQL.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

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
    author_link_to_domain,
    category_to_domain,
    edit_activity_to_domain,
    edit_entry_to_domain,
    group_by_pub,
    person_to_domain,
    publication_to_domain,
    status_entry_to_domain,
    summary_to_domain,
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

# Unicode-aware lower(); SQLite's builtin only folds ASCII.
_FOLD = "casefold"


def _now() -> str:
    return utcnow().isoformat()


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


def _ilike(column: str) -> str:
    return f"{_FOLD}({column}) LIKE {_FOLD}(?) ESCAPE '\\'"


class SQLitePublicationStorage(PublicationStorageInterface):
    """SQLite implementation of publication storage."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._create_tables()

    def _create_tables(self) -> None:
        """Create publication table if it doesn't exist."""
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS publication (
                pub_id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT,
                venue_id INTEGER REFERENCES venue(venue_id),
                venue_name TEXT,
                level TEXT,
                year INTEGER,
                abstract TEXT,
                link_url TEXT,
                has_attachment INTEGER NOT NULL DEFAULT 0,
                attachment_path TEXT,
                status TEXT NOT NULL DEFAULT 'draft',
                owner_user_id INTEGER,
                created_at DATETIME NOT NULL,
                updated_at DATETIME NOT NULL
            )
        """
        )
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_publication_status ON publication(status)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_publication_year ON publication(year)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_publication_owner ON publication(owner_user_id)")

    def add(self, values: dict) -> int:
        columns = [c for c in PUBLICATION_COLUMNS if c in values]
        now = _now()
        cursor = self.conn.execute(
            f"INSERT INTO publication ({', '.join(columns)}, created_at, updated_at) VALUES ({_placeholders(columns)}, ?, ?)",
            [values[c] for c in columns] + [now, now],
        )
        return cursor.lastrowid

    def get(self, pub_id: int) -> Optional[PublicationRecord]:
        row = self.conn.execute("SELECT * FROM publication WHERE pub_id = ?", (pub_id,)).fetchone()
        if row:
            return publication_to_domain(row)
        return None

    def update(self, pub_id: int, values: dict) -> None:
        columns = [c for c in PUBLICATION_COLUMNS if c in values]
        assignments = ", ".join(f"{c} = ?" for c in columns + ["updated_at"])
        self.conn.execute(
            f"UPDATE publication SET {assignments} WHERE pub_id = ?",
            [values[c] for c in columns] + [_now(), pub_id],
        )

    def delete(self, pub_id: int) -> None:
        self.conn.execute("DELETE FROM publication WHERE pub_id = ?", (pub_id,))

    def find_duplicate(
        self,
        title: Optional[str],
        year: Optional[int],
        link_url: Optional[str],
        venue_name: Optional[str] = None,
        match_venue: bool = False,
    ) -> Optional[int]:
        if link_url:
            row = self.conn.execute(
                "SELECT pub_id FROM publication WHERE link_url = ? ORDER BY pub_id LIMIT 1",
                (link_url,),
            ).fetchone()
            if row:
                return row[0]
        if title:
            query = f"SELECT pub_id FROM publication WHERE {_FOLD}(title) = {_FOLD}(?) AND year IS ?"
            params: list = [title, year]
            if match_venue:
                query += f" AND {_FOLD}(COALESCE(venue_name, '')) = {_FOLD}(?)"
                params.append(venue_name or "")
            row = self.conn.execute(query + " ORDER BY pub_id LIMIT 1", params).fetchone()
            if row:
                return row[0]
        return None

    @property
    def publication_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM publication").fetchone()[0]


class SQLitePersonStorage(PersonStorageInterface):
    """SQLite implementation of person storage."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS person (
                person_id INTEGER PRIMARY KEY AUTOINCREMENT,
                full_name TEXT NOT NULL,
                email TEXT,
                affiliation TEXT,
                person_type TEXT,
                user_id INTEGER
            )
        """
        )
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_person_email ON person(email)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_person_name ON person(full_name)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_person_user ON person(user_id)")

    def find_by_email(self, email: str) -> Optional[int]:
        row = self.conn.execute("SELECT person_id FROM person WHERE email = ? ORDER BY person_id LIMIT 1", (email,)).fetchone()
        return row[0] if row else None

    def find_by_name(self, full_name: str, person_type: Optional[str] = None) -> Optional[int]:
        query = "SELECT person_id FROM person WHERE full_name = ?"
        params: list = [full_name]
        if person_type:
            query += " AND person_type = ?"
            params.append(person_type)
        row = self.conn.execute(query + " ORDER BY person_id LIMIT 1", params).fetchone()
        return row[0] if row else None

    def add(self, person: Person) -> int:
        cursor = self.conn.execute(
            "INSERT INTO person (full_name, email, affiliation, person_type, user_id) VALUES (?, ?, ?, ?, ?)",
            (
                person.full_name,
                person.email,
                person.affiliation,
                person.person_type.value if person.person_type else None,
                person.user_id,
            ),
        )
        return cursor.lastrowid

    def get(self, person_id: int) -> Optional[Person]:
        row = self.conn.execute("SELECT * FROM person WHERE person_id = ?", (person_id,)).fetchone()
        return person_to_domain(row) if row else None

    def link_user(self, person_id: int, user_id: int) -> None:
        self.conn.execute("UPDATE person SET user_id = ? WHERE person_id = ? AND user_id IS NULL", (user_id, person_id))

    def search(self, q: str, limit: int) -> list[Person]:
        rows = self.conn.execute(
            f"SELECT * FROM person WHERE {_ilike('full_name')} ORDER BY full_name, person_id LIMIT ?",
            (like_pattern(q), limit),
        ).fetchall()
        return [person_to_domain(row) for row in rows]


class SQLiteCategoryStorage(CategoryStorageInterface):
    """SQLite implementation of the category catalogue."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS category (
                category_id INTEGER PRIMARY KEY AUTOINCREMENT,
                category_name TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'ACTIVE',
                created_at DATETIME NOT NULL,
                updated_at DATETIME NOT NULL
            )
        """
        )

    def find_by_name(self, name: str) -> Optional[Category]:
        row = self.conn.execute("SELECT * FROM category WHERE category_name = ?", (name,)).fetchone()
        return category_to_domain(row) if row else None

    def get(self, category_id: int) -> Optional[Category]:
        row = self.conn.execute("SELECT * FROM category WHERE category_id = ?", (category_id,)).fetchone()
        return category_to_domain(row) if row else None

    def add(self, name: str, status: str = "ACTIVE") -> int:
        now = _now()
        cursor = self.conn.execute(
            "INSERT INTO category (category_name, status, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (name, status, now, now),
        )
        return cursor.lastrowid

    def list(self, q: Optional[str] = None) -> list[Category]:
        query = "SELECT * FROM category"
        params: list = []
        if q:
            query += f" WHERE {_ilike('category_name')}"
            params.append(like_pattern(q))
        rows = self.conn.execute(query + " ORDER BY category_name", params).fetchall()
        return [category_to_domain(row) for row in rows]

    def set_status(self, category_id: int, status: str) -> None:
        self.conn.execute(
            "UPDATE category SET status = ?, updated_at = ? WHERE category_id = ?",
            (status, _now(), category_id),
        )


class SQLiteVenueStorage(VenueStorageInterface):
    """SQLite implementation of the venue catalogue."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS venue (
                venue_id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL,
                name TEXT
            )
        """
        )

    def add(self, venue: Venue) -> int:
        cursor = self.conn.execute("INSERT INTO venue (type, name) VALUES (?, ?)", (venue.type.value, venue.name))
        return cursor.lastrowid

    def get(self, venue_id: int) -> Optional[Venue]:
        row = self.conn.execute("SELECT * FROM venue WHERE venue_id = ?", (venue_id,)).fetchone()
        return venue_to_domain(row) if row else None

    def list(self, q: Optional[str] = None) -> list[Venue]:
        query = "SELECT * FROM venue"
        params: list = []
        if q:
            query += f" WHERE {_ilike('name')}"
            params.append(like_pattern(q))
        rows = self.conn.execute(query + " ORDER BY name, venue_id", params).fetchall()
        return [venue_to_domain(row) for row in rows]


class SQLiteRelationStorage(RelationStorageInterface):
    """Authorships and category assignments."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS authorship (
                pub_id INTEGER NOT NULL REFERENCES publication(pub_id),
                author_order INTEGER NOT NULL,
                person_id INTEGER NOT NULL REFERENCES person(person_id),
                role TEXT,
                PRIMARY KEY (pub_id, author_order)
            )
        """
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS category_assignment (
                pub_id INTEGER NOT NULL REFERENCES publication(pub_id),
                category_id INTEGER NOT NULL REFERENCES category(category_id),
                PRIMARY KEY (pub_id, category_id)
            )
        """
        )
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_authorship_person ON authorship(person_id)")

    def replace_authors(self, pub_id: int, rows: list[tuple[int, int, Optional[str]]]) -> None:
        self.conn.execute("DELETE FROM authorship WHERE pub_id = ?", (pub_id,))
        self.conn.executemany(
            "INSERT INTO authorship (pub_id, person_id, author_order, role) VALUES (?, ?, ?, ?)",
            [(pub_id, person_id, order, role) for person_id, order, role in rows],
        )

    def replace_categories(self, pub_id: int, category_ids: list[int]) -> None:
        self.conn.execute("DELETE FROM category_assignment WHERE pub_id = ?", (pub_id,))
        self.conn.executemany(
            "INSERT OR IGNORE INTO category_assignment (pub_id, category_id) VALUES (?, ?)",
            [(pub_id, category_id) for category_id in category_ids],
        )

    def authors_for(self, pub_ids: Iterable[int]) -> dict[int, list[AuthorLink]]:
        result: dict[int, list[AuthorLink]] = {}
        for batch in chunked(pub_ids):
            rows = self.conn.execute(
                f"""
                SELECT a.pub_id, a.person_id, p.full_name, p.email, p.affiliation,
                       p.person_type, a.author_order, a.role
                FROM authorship a JOIN person p ON p.person_id = a.person_id
                WHERE a.pub_id IN ({_placeholders(batch)})
                ORDER BY a.pub_id, a.author_order
            """,
                batch,
            ).fetchall()
            for pub_id, links in group_by_pub(rows).items():
                result[pub_id] = [author_link_to_domain(link) for link in links]
        return result

    def categories_for(self, pub_ids: Iterable[int]) -> dict[int, list[str]]:
        result: dict[int, list[str]] = {}
        for batch in chunked(pub_ids):
            rows = self.conn.execute(
                f"""
                SELECT ca.pub_id, c.category_name
                FROM category_assignment ca JOIN category c ON c.category_id = ca.category_id
                WHERE ca.pub_id IN ({_placeholders(batch)})
                ORDER BY ca.pub_id, c.category_name
            """,
                batch,
            ).fetchall()
            result.update(group_by_pub(rows, "category_name"))
        return result

    def delete_for_publication(self, pub_id: int) -> None:
        self.conn.execute("DELETE FROM authorship WHERE pub_id = ?", (pub_id,))
        self.conn.execute("DELETE FROM category_assignment WHERE pub_id = ?", (pub_id,))


class SQLiteLedgerStorage(LedgerStorageInterface):
    """Status history and edit log."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS status_history (
                history_id INTEGER PRIMARY KEY AUTOINCREMENT,
                pub_id INTEGER NOT NULL REFERENCES publication(pub_id),
                status TEXT NOT NULL,
                changed_by INTEGER,
                note TEXT,
                changed_at DATETIME NOT NULL
            )
        """
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS edit_log (
                edit_id INTEGER PRIMARY KEY AUTOINCREMENT,
                pub_id INTEGER NOT NULL REFERENCES publication(pub_id),
                user_id INTEGER,
                field_name TEXT NOT NULL,
                old_value TEXT,
                new_value TEXT,
                edited_at DATETIME NOT NULL
            )
        """
        )
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_status_history_pub ON status_history(pub_id)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_edit_log_pub ON edit_log(pub_id)")

    def append_status(self, pub_id: int, status: str, changed_by: Optional[int], note: Optional[str]) -> StatusHistoryEntry:
        now = _now()
        cursor = self.conn.execute(
            "INSERT INTO status_history (pub_id, status, changed_by, note, changed_at) VALUES (?, ?, ?, ?, ?)",
            (pub_id, status, changed_by, note, now),
        )
        return StatusHistoryEntry(
            history_id=cursor.lastrowid, pub_id=pub_id, status=status, changed_by=changed_by, note=note, changed_at=now
        )

    def status_history(self, pub_id: int) -> list[StatusHistoryEntry]:
        rows = self.conn.execute(
            "SELECT * FROM status_history WHERE pub_id = ? ORDER BY changed_at, history_id",
            (pub_id,),
        ).fetchall()
        return [status_entry_to_domain(row) for row in rows]

    def append_edits(self, entries: list[EditLogEntry]) -> None:
        self.conn.executemany(
            "INSERT INTO edit_log (pub_id, user_id, field_name, old_value, new_value, edited_at) VALUES (?, ?, ?, ?, ?, ?)",
            [(e.pub_id, e.user_id, e.field_name, e.old_value, e.new_value, e.edited_at.isoformat()) for e in entries],
        )

    def edit_history(self, pub_id: int, limit: Optional[int] = None, newest_first: bool = True) -> list[EditLogEntry]:
        direction = "DESC" if newest_first else "ASC"
        query = f"SELECT * FROM edit_log WHERE pub_id = ? ORDER BY edited_at {direction}, edit_id {direction}"
        params: list = [pub_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [edit_entry_to_domain(row) for row in self.conn.execute(query, params).fetchall()]

    def edit_activity(
        self,
        q: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 200,
    ) -> list[EditActivity]:
        clauses: list[str] = []
        params: list = []
        if q:
            pattern = like_pattern(q)
            clauses.append(
                "(" + " OR ".join(_ilike(c) for c in ("e.field_name", "e.old_value", "e.new_value", "p.title")) + ")"
            )
            params.extend([pattern] * 4)
        if date_from:
            clauses.append("e.edited_at >= ?")
            params.append(date_from.isoformat())
        if date_to:
            clauses.append("e.edited_at <= ?")
            params.append(date_to.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"""
            SELECT e.*, p.title AS pub_title
            FROM edit_log e LEFT JOIN publication p ON p.pub_id = e.pub_id
            {where}
            ORDER BY e.edited_at DESC, e.edit_id DESC
            LIMIT ?
        """,
            params + [limit],
        ).fetchall()
        return [edit_activity_to_domain(row) for row in rows]

    def delete_for_publication(self, pub_id: int) -> None:
        self.conn.execute("DELETE FROM edit_log WHERE pub_id = ?", (pub_id,))
        self.conn.execute("DELETE FROM status_history WHERE pub_id = ?", (pub_id,))


class SQLiteCriteriaResolver(CriteriaResolverInterface):
    """Set lookups for the criteria engine, expressed as SQL over the tables above."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _ids(self, query: str, params) -> set[int]:
        return {row[0] for row in self.conn.execute(query, params).fetchall()}

    def ids_for_author_term(self, term: str) -> set[int]:
        return self._ids(
            f"SELECT DISTINCT a.pub_id FROM authorship a JOIN person p ON p.person_id = a.person_id WHERE {_ilike('p.full_name')}",
            (like_pattern(term),),
        )

    def ids_for_category_term(self, term: str) -> set[int]:
        return self._ids(
            f"""
            SELECT DISTINCT ca.pub_id
            FROM category_assignment ca JOIN category c ON c.category_id = ca.category_id
            WHERE c.status = 'ACTIVE' AND {_ilike('c.category_name')}
        """,
            (like_pattern(term),),
        )

    def ids_for_user(self, user_id: int, lead_only: bool = False) -> set[int]:
        authored = "SELECT a.pub_id FROM authorship a JOIN person p ON p.person_id = a.person_id WHERE p.user_id = ?"
        if lead_only:
            return self._ids(authored + " AND a.role = 'LEAD'", (user_id,))
        return self._ids(authored + " UNION SELECT pub_id FROM publication WHERE owner_user_id = ?", (user_id, user_id))

    def ids_with_person_type(self, person_type: str) -> set[int]:
        return self._ids(
            "SELECT DISTINCT a.pub_id FROM authorship a JOIN person p ON p.person_id = a.person_id WHERE p.person_type = ?",
            (person_type,),
        )

    def match_scalar_filters(self, filters: SearchFilters) -> list[MatchKey]:
        clauses: list[str] = []
        params: list = []
        if filters.statuses:
            clauses.append(f"p.status IN ({_placeholders(filters.statuses)})")
            params.extend(filters.statuses)
        if filters.levels:
            clauses.append(f"p.level IN ({_placeholders(filters.levels)})")
            params.extend(filters.levels)
        if filters.year_from is not None:
            clauses.append("p.year >= ?")
            params.append(filters.year_from)
        if filters.year_to is not None:
            clauses.append("p.year <= ?")
            params.append(filters.year_to)
        if filters.has_attachment is not None:
            clauses.append("p.has_attachment = ?")
            params.append(1 if filters.has_attachment else 0)
        if filters.venue_types:
            clauses.append(f"v.type IN ({_placeholders(filters.venue_types)})")
            params.extend(filters.venue_types)
        if filters.q and filters.scope != SearchScope.AUTHOR:
            columns = ["p.title"] if filters.scope == SearchScope.TITLE else ["p.title", "p.venue_name", "p.link_url"]
            clauses.append("(" + " OR ".join(_ilike(c) for c in columns) + ")")
            params.extend([like_pattern(filters.q)] * len(columns))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT p.pub_id, p.year, p.status FROM publication p LEFT JOIN venue v ON v.venue_id = p.venue_id {where}",
            params,
        ).fetchall()
        return [MatchKey(row[0], row[1], row[2]) for row in rows]

    def fetch_summaries(self, pub_ids: Iterable[int]) -> dict[int, PublicationRow]:
        result: dict[int, PublicationRow] = {}
        for batch in chunked(pub_ids):
            rows = self.conn.execute(
                f"""
                SELECT p.pub_id, p.title, p.venue_name, v.type AS venue_type, p.level, p.year,
                       p.status, p.has_attachment, p.link_url, p.updated_at
                FROM publication p LEFT JOIN venue v ON v.venue_id = p.venue_id
                WHERE p.pub_id IN ({_placeholders(batch)})
            """,
                batch,
            ).fetchall()
            for row in rows:
                summary = summary_to_domain(row)
                result[summary.pub_id] = summary
        return result


class SQLiteRegistryStorage(RegistryStorageInterface):
    """SQLite implementation of combined registry storage.

    Uses a single SQLite connection for all storage needs. Suitable for testing and development.
    """

    def __init__(self, db_path: Path | str):
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory database
        """
        self.db_path = None if db_path == ":memory:" else Path(db_path)
        self.conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.create_function(_FOLD, 1, lambda s: s.casefold() if isinstance(s, str) else s, deterministic=True)
        self._depth = 0
        self._savepoints = 0

        # Referenced tables first
        self._venues = SQLiteVenueStorage(self.conn)
        self._publications = SQLitePublicationStorage(self.conn)
        self._persons = SQLitePersonStorage(self.conn)
        self._categories = SQLiteCategoryStorage(self.conn)
        self._relations = SQLiteRelationStorage(self.conn)
        self._ledger = SQLiteLedgerStorage(self.conn)
        self._criteria = SQLiteCriteriaResolver(self.conn)

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
            self.conn.execute("BEGIN")
            yield self
            self.conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._rollback()
            logger.error("SQLite transaction failed: %s", exc)
            raise StoreError(str(exc)) from exc
        except BaseException:
            self._rollback()
            raise
        finally:
            self._depth = 0

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    @contextmanager
    def savepoint(self):
        self._savepoints += 1
        name = f"sp_{self._savepoints}"
        self.conn.execute(f"SAVEPOINT {name}")
        try:
            yield self
        except BaseException:
            self.conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        self.conn.execute(f"RELEASE SAVEPOINT {name}")

    def close(self) -> None:
        """Close connections and clean up resources."""
        self.conn.close()
