"""
Publication registry: the operations exposed to the outside world.

Each public method runs in one storage transaction, so the publication row,
its authors and categories, and the status and edit ledgers change together
or not at all. The registry never owns a connection; it is handed a storage
object per request (see ``query/storage_factory.py``).

Example:

    >>> from pub_registry.storage.backends.sqlite import SQLiteRegistryStorage
    >>> registry = PublicationRegistry(SQLiteRegistryStorage(":memory:"))
    >>> prof = Actor(user_id=7, role=UserRole.PROFESSOR)
    >>> pub_id = registry.submit_publication(prof, {"title": "On Graphs", "year": 2021}, authors=[{"full_name": "A. Smith"}])
    >>> registry.search({"authors": "smith"}).total
    1
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Union

from .audit import EditAuditLogger, FieldChange, apply_abstract_edit, compute_changes
from .base import CategoryStatus, PublicationStatus, ReviewAction, UserRole
from .config import Settings, get_settings
from .criteria import FilterInput, coerce_filters, resolve_matches
from .criteria import search as criteria_search
from .entity import (
    Actor,
    AuthorInput,
    Category,
    EditActivity,
    EditLogEntry,
    FacetCount,
    Person,
    PublicationDetail,
    PublicationFields,
    PublicationUpdate,
    Report,
    RevisionNotice,
    SearchPage,
    StatusHistoryEntry,
    TransitionResult,
    UpdateResult,
    Venue,
    VersionDiffRow,
)
from .errors import ForbiddenError, StoreError, ValidationError
from .report import build_facets, build_report
from .storage.interfaces import AttachmentStoreInterface, RegistryStorageInterface
from .store import RecordStore
from .workflow import PROFESSOR_EDITABLE, StatusWorkflow, owns

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}

PEOPLE_SEARCH_LIMIT = 10
MAX_PEOPLE_SEARCH_LIMIT = 50


def _authors(authors: Optional[Iterable[Union[AuthorInput, Mapping[str, Any]]]]) -> Optional[list[AuthorInput]]:
    if authors is None:
        return None
    return [a if isinstance(a, AuthorInput) else AuthorInput.model_validate(a) for a in authors]


def _account_links(actor: Actor, authors: list[AuthorInput]) -> list[AuthorInput]:
    """Professors may only attach their own account to an author entry."""
    if actor.is_staff:
        return authors
    return [
        a if a.user_id in (None, actor.user_id) else a.model_copy(update={"user_id": None})
        for a in authors
    ]


class PublicationRegistry:
    def __init__(
        self,
        storage: RegistryStorageInterface,
        settings: Optional[Settings] = None,
        attachment_store: Optional[AttachmentStoreInterface] = None,
    ):
        self.storage = storage
        self.settings = settings or get_settings()
        self.attachment_store = attachment_store
        self.store = RecordStore(storage, match_venue=self.settings.DUPLICATE_MATCH_VENUE)
        self.audit = EditAuditLogger(storage)
        self.workflow = StatusWorkflow(storage, self.audit, strict=self.settings.STRICT_TRANSITIONS)

    # ========== WRITES ==========

    def submit_publication(
        self,
        owner: Actor,
        fields: Union[PublicationFields, Mapping[str, Any]],
        authors: Iterable[Union[AuthorInput, Mapping[str, Any]]] = (),
        categories: Iterable[str] = (),
    ) -> int:
        """
        Create a publication owned by ``owner``.

        Records start as drafts; a different requested status is applied as a
        normal workflow transition right after creation.
        """
        if not isinstance(fields, PublicationFields):
            fields = PublicationFields.model_validate(dict(fields))
        author_list = _authors(authors) or []

        with self.storage.transaction():
            pub_id = self.store.create_publication(fields, owner.user_id)
            self.store.replace_authors(pub_id, _account_links(owner, author_list), link_existing=owner.is_staff)
            self.store.replace_categories(pub_id, categories)
            if fields.status != PublicationStatus.DRAFT:
                record = self.store.get_publication(pub_id)
                self.workflow.transition(record, fields.status, owner)
        return pub_id

    def update_publication(
        self,
        pub_id: int,
        actor: Actor,
        changes: Union[PublicationUpdate, Mapping[str, Any], None] = None,
        authors: Optional[Iterable[Union[AuthorInput, Mapping[str, Any]]]] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> UpdateResult:
        """
        Apply a partial update. Only fields the caller set are considered, and
        only fields whose value actually changes are written and audited.
        """
        if changes is None:
            changes = PublicationUpdate()
        elif not isinstance(changes, PublicationUpdate):
            changes = PublicationUpdate.model_validate(dict(changes))
        author_list = _authors(authors)
        category_list = list(categories) if categories is not None else None

        with self.storage.transaction():
            record = self.store.get_publication(pub_id)

            payload = changes.explicit_fields()
            if "abstract" in changes.model_fields_set or changes.abstract_edit is not None:
                replace = {"replace": changes.abstract} if "abstract" in changes.model_fields_set else {}
                payload["abstract"] = apply_abstract_edit(record.abstract, changes.abstract_edit, **replace)

            touches_fields = bool(payload) or author_list is not None or category_list is not None
            if touches_fields:
                self._check_can_edit(record, actor)
            if payload.get("venue_id") is not None and self.storage.venues.get(payload["venue_id"]) is None:
                raise ValidationError(f"venue {payload['venue_id']} does not exist")

            field_changes = compute_changes(record.audit_projection(), payload)
            self.store.update_fields(pub_id, {c.field: c.new for c in field_changes})

            if author_list is not None:
                before = self._author_names(pub_id)
                self.store.replace_authors(pub_id, _account_links(actor, author_list), link_existing=actor.is_staff)
                field_changes += self._list_change("authors", before, self._author_names(pub_id))
            if category_list is not None:
                before = self._category_names(pub_id)
                self.store.replace_categories(pub_id, category_list)
                field_changes += self._list_change("categories", before, self._category_names(pub_id))

            self.audit.record(pub_id, actor.user_id, field_changes)
            result = UpdateResult(pub_id=pub_id, changed_fields=[c.field for c in field_changes])

            if changes.status is not None:
                transition = self.workflow.transition(self.store.get_publication(pub_id), changes.status, actor)
                if transition.changed:
                    result.changed_fields.append("status")
                    result.warning = transition.warning

        if result.changed_fields:
            logger.info("Updated publication %s (%s) by user %s", pub_id, ", ".join(result.changed_fields), actor.user_id)
        return result

    def transition_status(
        self,
        pub_id: int,
        actor: Actor,
        new_status: Union[str, PublicationStatus],
        note: Optional[str] = None,
    ) -> TransitionResult:
        with self.storage.transaction():
            record = self.store.get_publication(pub_id)
            return self.workflow.transition(record, new_status, actor, note)

    def review_action(
        self,
        pub_id: int,
        actor: Actor,
        action: Union[str, ReviewAction],
        note: Optional[str] = None,
    ) -> TransitionResult:
        """Staff review decision: approve, request revision, or send back to draft."""
        self._require_staff(actor)
        try:
            action = ReviewAction(str(getattr(action, "value", action)).strip().lower())
        except ValueError:
            raise ValidationError(f"unknown review action: {action!r}") from None
        return self.transition_status(pub_id, actor, action.target_status, note)

    def delete_publication(self, pub_id: int, actor: Actor) -> None:
        with self.storage.transaction():
            record = self.store.get_publication(pub_id)
            if not actor.is_staff and not owns(record, actor):
                raise ForbiddenError(f"user {actor.user_id} may not delete publication {pub_id}")
            attachment_path = self.store.delete_publication(pub_id)

        if attachment_path and self.attachment_store is not None:
            try:
                self.attachment_store.remove(attachment_path)
            except Exception:
                logger.exception("Publication %s deleted but its attachment %s could not be removed", pub_id, attachment_path)

    def validate_attachment(self, filename: Optional[str], content_type: Optional[str] = None) -> None:
        """Only PDF uploads are accepted."""
        if not filename or not filename.lower().endswith(".pdf"):
            raise ValidationError("attachment must be a .pdf file")
        if content_type and content_type.split(";")[0].strip().lower() not in PDF_CONTENT_TYPES:
            raise ValidationError(f"attachment content type {content_type!r} is not PDF")

    # ========== READS ==========

    def get_publication(self, pub_id: int) -> PublicationDetail:
        with self.storage.transaction():
            return self.store.get_detail(pub_id)

    def get_status_history(self, pub_id: int) -> list[StatusHistoryEntry]:
        with self.storage.transaction():
            self.store.get_publication(pub_id)
            return self.storage.ledger.status_history(pub_id)

    def get_edit_history(self, pub_id: int, limit: Optional[int] = None) -> list[EditLogEntry]:
        """Edit-log entries of a publication, newest first."""
        limit = self.settings.EDIT_HISTORY_LIMIT if limit is None else max(int(limit), 0)
        with self.storage.transaction():
            self.store.get_publication(pub_id)
            return self.audit.history(pub_id, limit)

    def diff_versions(self, pub_id: int, from_version: int, to_version: int) -> list[VersionDiffRow]:
        with self.storage.transaction():
            self.store.get_publication(pub_id)
            return self.audit.diff_versions(pub_id, from_version, to_version)

    def edit_activity(
        self,
        q: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[EditActivity]:
        cap = self.settings.EDIT_ACTIVITY_LIMIT
        limit = cap if limit is None else min(max(int(limit), 1), cap)
        try:
            with self.storage.transaction():
                return self.audit.activity(q=q, date_from=date_from, date_to=date_to, limit=limit)
        except StoreError:
            logger.exception("Edit activity lookup failed")
            return []

    def search(self, filters: FilterInput = None, page: Any = 1, page_size: Any = None) -> SearchPage:
        try:
            with self.storage.transaction():
                return criteria_search(
                    self.storage,
                    filters,
                    page,
                    page_size,
                    default_page_size=self.settings.DEFAULT_PAGE_SIZE,
                    max_page_size=self.settings.MAX_PAGE_SIZE,
                )
        except StoreError:
            logger.exception("Search failed")
            return SearchPage(page=1, page_size=self.settings.DEFAULT_PAGE_SIZE)

    def public_search(self, filters: FilterInput = None, page: Any = 1, page_size: Any = None) -> SearchPage:
        """Search restricted to published records, ignoring any ownership filter."""
        public = coerce_filters(filters).model_copy(
            update={"statuses": [PublicationStatus.PUBLISHED.value], "owner_user_id": None, "lead_only": False}
        )
        return self.search(public, page, page_size)

    def report(self, filters: FilterInput = None) -> Report:
        try:
            with self.storage.transaction():
                return build_report(self.storage, filters, top_limit=self.settings.TOP_AUTHORS_LIMIT)
        except StoreError:
            logger.exception("Report failed")
            return Report()

    def facets(self, filters: FilterInput = None) -> list[FacetCount]:
        try:
            with self.storage.transaction():
                return build_facets(self.storage, filters)
        except StoreError:
            logger.exception("Facet count failed")
            return []

    def revision_notifications(self, actor: Actor) -> list[RevisionNotice]:
        """Publications where ``actor`` is a LEAD author and staff asked for revisions."""
        filters = coerce_filters(
            {"owner_user_id": actor.user_id, "lead_only": True, "statuses": [PublicationStatus.NEEDS_REVISION.value]}
        )
        with self.storage.transaction():
            keys = resolve_matches(self.storage, filters)
            summaries = self.storage.criteria.fetch_summaries([k.pub_id for k in keys])
            notices = []
            for key in keys:
                summary = summaries.get(key.pub_id)
                if summary is None:
                    continue
                notes = [
                    h.note
                    for h in self.storage.ledger.status_history(key.pub_id)
                    if h.status == PublicationStatus.NEEDS_REVISION
                ]
                notices.append(
                    RevisionNotice(
                        pub_id=summary.pub_id,
                        title=summary.title or "",
                        venue_name=summary.venue_name,
                        year=summary.year,
                        status=summary.status,
                        updated_at=summary.updated_at,
                        latest_note=notes[-1] if notes else None,
                    )
                )
        return notices

    # ========== PEOPLE ==========

    def search_people(self, q: Optional[str], limit: Optional[int] = None) -> list[Person]:
        """
        Name lookup for author entry: case-insensitive substring match on
        ``full_name``, ordered by name. A blank query matches nobody.
        """
        q = (q or "").strip()
        if not q:
            return []
        limit = min(max(limit or PEOPLE_SEARCH_LIMIT, 1), MAX_PEOPLE_SEARCH_LIMIT)
        try:
            with self.storage.transaction():
                return self.storage.persons.search(q, limit)
        except StoreError:
            logger.exception("Person lookup failed")
            return []

    # ========== CATALOGUES ==========

    def list_categories(self, q: Optional[str] = None) -> list[Category]:
        with self.storage.transaction():
            return self.store.list_categories(q)

    def add_category(self, actor: Actor, name: str) -> Category:
        self._require_staff(actor)
        with self.storage.transaction():
            category_id = self.store.resolve_category(name)
            if category_id is None:
                raise ValidationError("category name is required")
            return self.storage.categories.get(category_id)

    def set_category_status(self, actor: Actor, category_id: int, status: Union[str, CategoryStatus]) -> Category:
        self._require_staff(actor)
        try:
            status = CategoryStatus(str(getattr(status, "value", status)).strip().upper())
        except ValueError:
            raise ValidationError(f"unknown category status: {status!r}") from None
        with self.storage.transaction():
            return self.store.set_category_status(category_id, status)

    def add_venue(self, venue: Union[Venue, Mapping[str, Any]]) -> Venue:
        if not isinstance(venue, Venue):
            venue = Venue.model_validate(dict(venue))
        with self.storage.transaction():
            venue_id = self.store.add_venue(venue)
            return self.storage.venues.get(venue_id)

    def list_venues(self, q: Optional[str] = None) -> list[Venue]:
        with self.storage.transaction():
            return self.store.list_venues(q)

    # ========== HELPERS ==========

    def _require_staff(self, actor: Actor) -> None:
        if not actor.is_staff:
            raise ForbiddenError(f"user {actor.user_id} ({actor.role.value}) is not staff")

    def _check_can_edit(self, record, actor: Actor) -> None:
        """Staff may edit anything; professors only their own drafts and revisions."""
        if actor.is_staff:
            return
        if actor.role != UserRole.PROFESSOR or not owns(record, actor):
            raise ForbiddenError(f"user {actor.user_id} may not edit publication {record.pub_id}")
        if record.status not in PROFESSOR_EDITABLE:
            raise ForbiddenError(f"publication {record.pub_id} is {record.status.value} and cannot be edited")

    def _author_names(self, pub_id: int) -> list[str]:
        return [link.full_name for link in self.storage.relations.authors_for([pub_id]).get(pub_id, [])]

    def _category_names(self, pub_id: int) -> list[str]:
        return self.storage.relations.categories_for([pub_id]).get(pub_id, [])

    @staticmethod
    def _list_change(field: str, before: list[str], after: list[str]) -> list[FieldChange]:
        if before == after:
            return []
        return [FieldChange(field, "; ".join(before) or None, "; ".join(after) or None)]
