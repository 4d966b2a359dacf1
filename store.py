"""
Record store: write invariants over the storage backends.

This layer owns the rules that are not expressible as table constraints:
the duplicate guard on creation, idempotent person and category
resolution, author ordering, and the deletion guard with its cascade.
All methods expect to run inside ``storage.transaction()``.
"""

import logging
from typing import Iterable, Optional

from .base import CategoryStatus, PublicationStatus
from .entity import (
    AuthorInput,
    Category,
    Person,
    PublicationDetail,
    PublicationFields,
    PublicationRecord,
    Venue,
)
from .errors import DuplicateError, ForbiddenError, NotFoundError, ValidationError
from .mapper import column_value, publication_columns
from .storage.interfaces import RegistryStorageInterface

logger = logging.getLogger(__name__)


class RecordStore:
    def __init__(self, storage: RegistryStorageInterface, match_venue: bool = False):
        self.storage = storage
        self.match_venue = match_venue

    # ========== PUBLICATIONS ==========

    def create_publication(self, fields: PublicationFields, owner_user_id: Optional[int] = None) -> int:
        """Insert a new draft publication, rejecting duplicates."""
        if fields.venue_id is not None and self.storage.venues.get(fields.venue_id) is None:
            raise ValidationError(f"venue {fields.venue_id} does not exist")

        existing = self.storage.publications.find_duplicate(
            fields.title,
            fields.year,
            fields.link_url,
            venue_name=fields.venue_name,
            match_venue=self.match_venue,
        )
        if existing is not None:
            logger.info("Rejected duplicate of publication %s (title=%r, year=%s)", existing, fields.title, fields.year)
            raise DuplicateError(existing)

        values = publication_columns(fields, owner_user_id)
        values["status"] = PublicationStatus.DRAFT.value
        pub_id = self.storage.publications.add(values)
        logger.info("Created publication %s for user %s", pub_id, owner_user_id)
        return pub_id

    def get_publication(self, pub_id: int) -> PublicationRecord:
        record = self.storage.publications.get(pub_id)
        if record is None:
            raise NotFoundError("publication", pub_id)
        return record

    def get_detail(self, pub_id: int) -> PublicationDetail:
        record = self.get_publication(pub_id)
        return PublicationDetail(
            **record.model_dump(),
            authors=self.storage.relations.authors_for([pub_id]).get(pub_id, []),
            categories=self.storage.relations.categories_for([pub_id]).get(pub_id, []),
        )

    def update_fields(self, pub_id: int, values: dict) -> None:
        if values:
            self.storage.publications.update(pub_id, {k: column_value(v) for k, v in values.items()})

    def delete_publication(self, pub_id: int) -> Optional[str]:
        """
        Delete a publication and everything hanging off it.

        Returns the attachment path (if any) so the caller can remove the blob
        once the transaction has committed.
        """
        record = self.get_publication(pub_id)
        if record.status == PublicationStatus.PUBLISHED:
            raise ForbiddenError(f"publication {pub_id} is published and cannot be deleted")

        self.storage.relations.delete_for_publication(pub_id)
        self.storage.ledger.delete_for_publication(pub_id)
        self.storage.publications.delete(pub_id)
        logger.info("Deleted publication %s", pub_id)
        return record.attachment_path

    # ========== PEOPLE ==========

    def resolve_person(
        self,
        full_name: str,
        email: Optional[str] = None,
        person_type=None,
        affiliation: Optional[str] = None,
        user_id: Optional[int] = None,
        link_existing: bool = True,
    ) -> int:
        """
        Find or create a person. Email (case-sensitive) is tried first, then
        the exact name narrowed by person type. Repeated calls with the same
        input return the same id.

        ``user_id`` is stored on a new person. An existing person without an
        account is linked to it only when ``link_existing`` is set.
        """
        full_name = (full_name or "").strip()
        if not full_name:
            raise ValidationError("author full_name is required")
        email = (email or "").strip() or None
        person_type_value = column_value(person_type)

        person_id = self.storage.persons.find_by_email(email) if email else None
        if person_id is None:
            person_id = self.storage.persons.find_by_name(full_name, person_type_value)

        if person_id is None:
            person_id = self.storage.persons.add(
                Person(
                    full_name=full_name,
                    email=email,
                    affiliation=affiliation,
                    person_type=person_type,
                    user_id=user_id,
                )
            )
            logger.debug("Created person %s (%s)", person_id, full_name)
        elif user_id is not None and link_existing:
            self.storage.persons.link_user(person_id, user_id)
        return person_id

    def replace_authors(self, pub_id: int, authors: Iterable[AuthorInput], link_existing: bool = True) -> list[int]:
        """
        Replace the author list. Orders default to the 1-based list position;
        a person listed twice keeps the first entry.
        """
        rows: list[tuple[int, int, Optional[str]]] = []
        seen_people: set[int] = set()
        seen_orders: set[int] = set()
        for position, author in enumerate(authors, start=1):
            person_id = self.resolve_person(
                author.full_name,
                email=author.email,
                person_type=author.person_type,
                affiliation=author.affiliation,
                user_id=author.user_id,
                link_existing=link_existing,
            )
            if person_id in seen_people:
                continue
            order = author.author_order if author.author_order is not None else position
            if order in seen_orders:
                raise ValidationError(f"author_order {order} is used twice")
            seen_people.add(person_id)
            seen_orders.add(order)
            rows.append((person_id, order, column_value(author.role)))

        self.storage.relations.replace_authors(pub_id, rows)
        return [person_id for person_id, _, _ in rows]

    # ========== CATEGORIES ==========

    def resolve_category(self, name: Optional[str]) -> Optional[int]:
        name = (name or "").strip()
        if not name:
            return None
        existing = self.storage.categories.find_by_name(name)
        if existing is not None:
            return existing.category_id
        category_id = self.storage.categories.add(name, CategoryStatus.ACTIVE.value)
        logger.info("Created category %s (%s)", category_id, name)
        return category_id

    def replace_categories(self, pub_id: int, names: Iterable[str]) -> list[int]:
        category_ids: list[int] = []
        for name in names:
            category_id = self.resolve_category(name)
            if category_id is not None and category_id not in category_ids:
                category_ids.append(category_id)
        self.storage.relations.replace_categories(pub_id, category_ids)
        return category_ids

    def list_categories(self, q: Optional[str] = None) -> list[Category]:
        return self.storage.categories.list(q)

    def set_category_status(self, category_id: int, status: CategoryStatus) -> Category:
        if self.storage.categories.get(category_id) is None:
            raise NotFoundError("category", category_id)
        self.storage.categories.set_status(category_id, column_value(status))
        return self.storage.categories.get(category_id)

    # ========== VENUES ==========

    def add_venue(self, venue: Venue) -> int:
        return self.storage.venues.add(venue)

    def list_venues(self, q: Optional[str] = None) -> list[Venue]:
        return self.storage.venues.list(q)
