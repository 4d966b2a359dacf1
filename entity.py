"""
## Overview

Domain models for the publication registry.

These are the Pydantic classes used by the registry, the query engines and
the API. For database storage they are mapped to the persistence models in
``storage/models`` (see ``mapper.py``).

Design principles:

1. **Status is history** - the current status lives on the publication, but
   every change is also appended to the status ledger.
2. **Edits are audited per field** - updates produce one edit-log entry per
   changed scalar field.
3. **Filters never fail** - malformed filter values are dropped or narrow the
   result to nothing; they never raise.
"""

from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .base import (
    AuthorRole,
    CategoryStatus,
    PersonType,
    PublicationLevel,
    PublicationStatus,
    SearchScope,
    UserRole,
    VenueType,
)

# Scalar publication fields that are audited on update, in display order.
AUDITED_FIELDS = (
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
)

# Updatable fields backed by NOT NULL columns.
NON_NULLABLE_FIELDS = ("has_attachment",)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


class Actor(BaseModel):
    """The user performing an operation, as supplied by the identity provider."""

    user_id: int
    role: UserRole

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.STAFF, UserRole.ADMIN)


# ========== PEOPLE, CATEGORIES, VENUES ==========


class AuthorInput(BaseModel):
    """One entry of an author list submitted with a publication."""

    full_name: str
    email: Optional[str] = None
    affiliation: Optional[str] = None
    person_type: Optional[PersonType] = None
    role: Optional[AuthorRole] = None
    author_order: Optional[int] = None
    # Account link from the identity provider, used for "my records".
    user_id: Optional[int] = None

    @field_validator("full_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        return v.strip()

    @field_validator("email", "affiliation", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class Person(BaseModel):
    person_id: Optional[int] = None
    full_name: str
    email: Optional[str] = None
    affiliation: Optional[str] = None
    person_type: Optional[PersonType] = None
    user_id: Optional[int] = None


class Category(BaseModel):
    category_id: Optional[int] = None
    category_name: str
    status: CategoryStatus = CategoryStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Venue(BaseModel):
    venue_id: Optional[int] = None
    type: VenueType
    name: Optional[str] = None


class AuthorLink(BaseModel):
    """An authorship row joined with its person."""

    person_id: int
    full_name: str
    email: Optional[str] = None
    affiliation: Optional[str] = None
    person_type: Optional[PersonType] = None
    author_order: Optional[int] = None
    role: Optional[AuthorRole] = None


# ========== PUBLICATIONS ==========


class PublicationFields(BaseModel):
    """Scalar fields supplied when a publication is submitted."""

    model_config = ConfigDict(use_enum_values=False)

    title: Optional[str] = None
    venue_id: Optional[int] = None
    venue_name: Optional[str] = None
    level: Optional[PublicationLevel] = None
    year: Optional[int] = None
    abstract: Optional[str] = None
    link_url: Optional[str] = None
    has_attachment: bool = False
    attachment_path: Optional[str] = None
    status: PublicationStatus = PublicationStatus.DRAFT

    @field_validator("title", "venue_name", "link_url", "attachment_path", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("level", mode="before")
    @classmethod
    def _upper_level(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v


class PublicationRecord(PublicationFields):
    """A publication as stored."""

    pub_id: int
    owner_user_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def audit_projection(self) -> Dict[str, Any]:
        """The 'before' view the audit logger diffs against."""
        return {name: getattr(self, name) for name in AUDITED_FIELDS}


class PublicationDetail(PublicationRecord):
    """A publication with its ordered authors and category names."""

    authors: List[AuthorLink] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class AbstractEdit(BaseModel):
    """
    Incremental edit of the abstract, used instead of a full replacement.

    Operations apply in this order: prepend, append, delete the first
    occurrence of ``delete``, then delete the index range
    ``[delete_from, delete_to)``.
    """

    prepend: Optional[str] = None
    append: Optional[str] = None
    delete: Optional[str] = None
    delete_from: Optional[int] = None
    delete_to: Optional[int] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in type(self).model_fields)


class PublicationUpdate(PublicationFields):
    """
    Partial update. Only fields explicitly set by the caller are written;
    ``model_fields_set`` tells an omitted field apart from one set to None.
    """

    has_attachment: Optional[bool] = None
    status: Optional[PublicationStatus] = None
    abstract_edit: Optional[AbstractEdit] = None

    def explicit_fields(self) -> Dict[str, Any]:
        """Fields the caller set. An explicit null on a non-nullable column is ignored."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name in AUDITED_FIELDS
            and name != "status"
            and not (name in NON_NULLABLE_FIELDS and getattr(self, name) is None)
        }


# ========== LEDGERS ==========


class StatusHistoryEntry(BaseModel):
    history_id: Optional[int] = None
    pub_id: int
    status: PublicationStatus
    changed_by: Optional[int] = None
    note: Optional[str] = None
    changed_at: datetime


class EditLogEntry(BaseModel):
    edit_id: Optional[int] = None
    pub_id: int
    user_id: Optional[int] = None
    field_name: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    edited_at: datetime


class EditActivity(EditLogEntry):
    """An edit-log entry joined with the title of its publication."""

    pub_title: Optional[str] = None


class VersionDiffRow(BaseModel):
    field: str
    old: Optional[str] = None
    next: Optional[str] = None
    changed: bool


# ========== OPERATION RESULTS ==========


class TransitionResult(BaseModel):
    pub_id: int
    previous: PublicationStatus
    current: PublicationStatus
    changed: bool
    warning: Optional[str] = None


class UpdateResult(BaseModel):
    pub_id: int
    changed_fields: List[str] = Field(default_factory=list)
    warning: Optional[str] = None


class RevisionNotice(BaseModel):
    """A publication returned to its lead author for revision."""

    pub_id: int
    title: str
    venue_name: Optional[str] = None
    year: Optional[int] = None
    status: PublicationStatus
    updated_at: Optional[datetime] = None
    latest_note: Optional[str] = None


# ========== SEARCH AND REPORTS ==========


def _split_terms(v) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        v = [v]
    terms: List[str] = []
    for item in v:
        if item is None:
            continue
        for part in str(item).split(","):
            part = part.strip()
            if part and part not in terms:
                terms.append(part)
    return terms


def _parse_int(v) -> Optional[int]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    try:
        return int(str(v).strip())
    except ValueError:
        return None


def parse_flag(v) -> Optional[bool]:
    if v is None or isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return None


class SearchFilters(BaseModel):
    """
    Filter surface shared by search, report and facets.

    Scalar dimensions combine OR-within / AND-across. ``authors`` and
    ``categories`` require a publication to match every term.

    Example:

        >>> SearchFilters(authors="Smith, Lee", year_from="2020", year_to="oops").authors
        ['Smith', 'Lee']
    """

    q: Optional[str] = None
    scope: SearchScope = SearchScope.ALL
    statuses: List[str] = Field(default_factory=list)
    levels: List[str] = Field(default_factory=list)
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    has_attachment: Optional[bool] = None
    venue_types: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    owner_user_id: Optional[int] = None
    lead_only: bool = False
    with_students: bool = False

    @field_validator("q", mode="before")
    @classmethod
    def _strip_q(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("scope", mode="before")
    @classmethod
    def _parse_scope(cls, v):
        if v is None:
            return SearchScope.ALL
        s = str(getattr(v, "value", v)).strip().lower()
        return s if s in {m.value for m in SearchScope} else SearchScope.ALL

    @field_validator("statuses", mode="before")
    @classmethod
    def _lower_terms(cls, v):
        return [t.lower() for t in _split_terms([getattr(x, "value", x) for x in _as_list(v)])]

    @field_validator("levels", "venue_types", mode="before")
    @classmethod
    def _upper_terms(cls, v):
        return [t.upper() for t in _split_terms([getattr(x, "value", x) for x in _as_list(v)])]

    @field_validator("authors", "categories", mode="before")
    @classmethod
    def _terms(cls, v):
        return _split_terms(v)

    @field_validator("year_from", "year_to", "owner_user_id", mode="before")
    @classmethod
    def _lenient_int(cls, v):
        return _parse_int(v)

    @field_validator("has_attachment", mode="before")
    @classmethod
    def _tri_state(cls, v):
        return parse_flag(v)

    @field_validator("lead_only", "with_students", mode="before")
    @classmethod
    def _flag(cls, v):
        return bool(parse_flag(v))

    @model_validator(mode="after")
    def _order_years(self):
        if self.year_from is not None and self.year_to is not None and self.year_from > self.year_to:
            self.year_from, self.year_to = self.year_to, self.year_from
        return self


def _as_list(v) -> list:
    if v is None:
        return []
    if isinstance(v, (list, tuple, set)):
        return list(v)
    return [v]


class MatchKey(NamedTuple):
    """The columns needed to order and bucket a matched publication."""

    pub_id: int
    year: Optional[int]
    status: str


class PublicationRow(BaseModel):
    """One row of a search result page."""

    pub_id: int
    title: Optional[str] = None
    venue_name: Optional[str] = None
    venue_type: Optional[VenueType] = None
    level: Optional[PublicationLevel] = None
    year: Optional[int] = None
    status: PublicationStatus
    has_attachment: bool = False
    link_url: Optional[str] = None
    updated_at: Optional[datetime] = None
    authors: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class SearchPage(BaseModel):
    rows: List[PublicationRow] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 10


class ReportTotals(BaseModel):
    all: int = 0
    draft: int = 0
    under_review: int = 0
    needs_revision: int = 0
    published: int = 0
    archived: int = 0
    with_students: int = 0


class YearCount(BaseModel):
    year: int
    count: int


class AuthorCount(BaseModel):
    person_id: int
    name: str
    total: int = 0
    published: int = 0
    under_review: int = 0


class Report(BaseModel):
    totals: ReportTotals = Field(default_factory=ReportTotals)
    by_year: List[YearCount] = Field(default_factory=list)
    top_authors: List[AuthorCount] = Field(default_factory=list)


class FacetCount(BaseModel):
    name: str
    count: int
