"""
REST API router for the publication registry.

The caller's identity comes from the identity provider in front of this
service, forwarded as the ``X-Actor-Id`` and ``X-Actor-Role`` headers.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from pydantic import BaseModel, Field

from pub_registry.base import UserRole
from pub_registry.entity import (
    Actor,
    AuthorInput,
    Category,
    EditActivity,
    EditLogEntry,
    FacetCount,
    PublicationDetail,
    PublicationFields,
    PublicationUpdate,
    Report,
    RevisionNotice,
    SearchFilters,
    SearchPage,
    StatusHistoryEntry,
    TransitionResult,
    UpdateResult,
    Venue,
    VersionDiffRow,
    parse_flag,
)
from pub_registry.errors import (
    DuplicateError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    RegistryError,
    StoreError,
    ValidationError,
)
from pub_registry.registry import PublicationRegistry

from ..storage_factory import get_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["publications"])

_STATUS_CODES = [
    (DuplicateError, 409),
    (InvalidTransitionError, 409),
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (ValidationError, 422),
    (StoreError, 503),
]


def to_http_exception(exc: RegistryError) -> HTTPException:
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
    if isinstance(exc, DuplicateError):
        return HTTPException(status_code=status_code, detail={"message": str(exc), "existing_id": exc.existing_id})
    return HTTPException(status_code=status_code, detail=str(exc))


@contextmanager
def http_errors():
    """Translate registry errors raised in the block into HTTP errors."""
    try:
        yield
    except RegistryError as exc:
        if isinstance(exc, StoreError):
            logger.error("Storage failure: %s", exc)
        raise to_http_exception(exc) from exc


def get_actor(
    x_actor_id: Optional[int] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Actor:
    if x_actor_id is None or not x_actor_role:
        raise HTTPException(status_code=401, detail="X-Actor-Id and X-Actor-Role headers are required")
    try:
        role = UserRole(x_actor_role.strip().upper())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"unknown role {x_actor_role!r}") from None
    return Actor(user_id=x_actor_id, role=role)


def get_optional_actor(
    x_actor_id: Optional[int] = Header(None),
    x_actor_role: Optional[str] = Header(None),
) -> Optional[Actor]:
    """Anonymous when neither identity header is sent."""
    if x_actor_id is None and not x_actor_role:
        return None
    return get_actor(x_actor_id, x_actor_role)


def require_staff(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_staff:
        raise HTTPException(status_code=403, detail="staff only")
    return actor


def search_filters(
    q: Optional[str] = None,
    scope: Optional[str] = None,
    status: Optional[List[str]] = Query(None),
    level: Optional[List[str]] = Query(None),
    year_from: Optional[str] = None,
    year_to: Optional[str] = None,
    has_attachment: Optional[str] = None,
    venue_type: Optional[List[str]] = Query(None),
    authors: Optional[List[str]] = Query(None),
    categories: Optional[List[str]] = Query(None),
    with_students: Optional[str] = None,
) -> SearchFilters:
    """
    Query-string filters. Multi-valued filters accept repeated parameters or
    comma-separated values; malformed values are ignored rather than rejected.
    """
    return SearchFilters(
        q=q,
        scope=scope,
        statuses=status,
        levels=level,
        year_from=year_from,
        year_to=year_to,
        has_attachment=has_attachment,
        venue_types=venue_type,
        authors=authors,
        categories=categories,
        with_students=with_students,
    )


# ========== REQUEST MODELS ==========


class SubmitRequest(PublicationFields):
    """
    Request model for submitting a publication.

    Attributes:

        authors: Ordered author list; persons are matched by email, then name
        categories: Category names; unknown names are created
    """

    authors: List[AuthorInput] = Field(default_factory=list, description="Ordered author list")
    categories: List[str] = Field(default_factory=list, description="Category names")


class UpdateRequest(PublicationUpdate):
    """
    Request model for a partial update. Omitted fields are left untouched;
    ``authors`` / ``categories`` replace the full list when present.
    """

    authors: Optional[List[AuthorInput]] = Field(None, description="Replacement author list")
    categories: Optional[List[str]] = Field(None, description="Replacement category names")


class StatusRequest(BaseModel):
    status: str = Field(..., description="Target status")
    note: Optional[str] = Field(None, description="Note stored with the status history entry")


class ReviewRequest(BaseModel):
    action: str = Field(..., description="approve | request | draft")
    note: Optional[str] = Field(None, description="Reviewer comment")


class CategoryRequest(BaseModel):
    category_name: str


class CategoryStatusRequest(BaseModel):
    status: str = Field(..., description="ACTIVE | INACTIVE")


class SubmitResponse(BaseModel):
    pub_id: int


class PersonMatch(BaseModel):
    person_id: int
    full_name: str
    email: Optional[str] = None


# ========== PUBLICATIONS ==========


@router.get("/publications/search", response_model=SearchPage, summary="Search publications")
def search_publications(
    filters: SearchFilters = Depends(search_filters),
    mine: Optional[str] = None,
    lead_only: Optional[str] = None,
    page: Optional[str] = None,
    page_size: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    """
    Filtered, paginated search across all statuses.

    - **authors** / **categories**: every term must match (AND)
    - **mine**: only the caller's records; **lead_only** narrows to LEAD authorship
    """
    updates = {}
    if parse_flag(mine):
        updates = {"owner_user_id": actor.user_id, "lead_only": bool(parse_flag(lead_only))}
    with http_errors():
        return registry.search(filters.model_copy(update=updates), page, page_size)


@router.get("/public/publications/search", response_model=SearchPage, summary="Search published records")
def public_search(
    filters: SearchFilters = Depends(search_filters),
    page: Optional[str] = None,
    page_size: Optional[str] = None,
    registry: PublicationRegistry = Depends(get_registry),
):
    """Anonymous search; only published records are visible."""
    return registry.public_search(filters, page, page_size)


@router.get("/publications/report", response_model=Report, summary="Aggregate report over a filter")
def publication_report(
    filters: SearchFilters = Depends(search_filters),
    lead_only: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    """Staff see every record; professors only their own."""
    if not actor.is_staff:
        filters = filters.model_copy(update={"owner_user_id": actor.user_id, "lead_only": bool(parse_flag(lead_only))})
    return registry.report(filters)


@router.get("/publications/facets", response_model=List[FacetCount], summary="Category counts over a filter")
def publication_facets(
    filters: SearchFilters = Depends(search_filters),
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    return registry.facets(filters)


@router.post("/publications", response_model=SubmitResponse, status_code=201, summary="Submit a publication")
def submit_publication(
    request: SubmitRequest,
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    """
    Create a publication owned by the caller. Returns 409 with ``existing_id``
    when it duplicates an existing record.
    """
    fields = PublicationFields.model_validate(request.model_dump(exclude={"authors", "categories"}))
    with http_errors():
        pub_id = registry.submit_publication(actor, fields, request.authors, request.categories)
    return SubmitResponse(pub_id=pub_id)


@router.get("/publications/{pub_id}", response_model=PublicationDetail, summary="Get a publication")
def get_publication(pub_id: int, actor: Actor = Depends(get_actor), registry: PublicationRegistry = Depends(get_registry)):
    with http_errors():
        return registry.get_publication(pub_id)


@router.patch("/publications/{pub_id}", response_model=UpdateResult, summary="Update a publication")
def update_publication(
    pub_id: int,
    request: UpdateRequest,
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    explicit = request.model_fields_set - {"authors", "categories"}
    changes = PublicationUpdate.model_validate(request.model_dump(include=explicit))
    with http_errors():
        return registry.update_publication(
            pub_id,
            actor,
            changes,
            authors=request.authors if "authors" in request.model_fields_set else None,
            categories=request.categories if "categories" in request.model_fields_set else None,
        )


@router.delete("/publications/{pub_id}", status_code=204, summary="Delete an unpublished publication")
def delete_publication(pub_id: int, actor: Actor = Depends(get_actor), registry: PublicationRegistry = Depends(get_registry)):
    with http_errors():
        registry.delete_publication(pub_id, actor)
    return Response(status_code=204)


@router.post("/publications/{pub_id}/status", response_model=TransitionResult, summary="Change status")
def transition_status(
    pub_id: int,
    request: StatusRequest,
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    with http_errors():
        return registry.transition_status(pub_id, actor, request.status, request.note)


@router.post("/publications/{pub_id}/review", response_model=TransitionResult, summary="Record a review decision")
def review_publication(
    pub_id: int,
    request: ReviewRequest,
    actor: Actor = Depends(require_staff),
    registry: PublicationRegistry = Depends(get_registry),
):
    with http_errors():
        return registry.review_action(pub_id, actor, request.action, request.note)


@router.get("/publications/{pub_id}/history", response_model=List[EditLogEntry], summary="Edit history")
def edit_history(
    pub_id: int,
    limit: Optional[int] = Query(None, ge=0),
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    with http_errors():
        return registry.get_edit_history(pub_id, limit)


@router.get("/publications/{pub_id}/status-history", response_model=List[StatusHistoryEntry], summary="Status history")
def status_history(pub_id: int, actor: Actor = Depends(get_actor), registry: PublicationRegistry = Depends(get_registry)):
    with http_errors():
        return registry.get_status_history(pub_id)


@router.get("/publications/{pub_id}/diff", response_model=List[VersionDiffRow], summary="Compare two edit versions")
def diff_versions(
    pub_id: int,
    from_version: int = Query(..., alias="from", ge=0),
    to_version: int = Query(..., alias="to", ge=0),
    actor: Actor = Depends(require_staff),
    registry: PublicationRegistry = Depends(get_registry),
):
    with http_errors():
        return registry.diff_versions(pub_id, from_version, to_version)


# ========== STAFF AND PROFESSOR FEEDS ==========


@router.get("/edits", response_model=List[EditActivity], summary="Edit activity across publications")
def edit_activity(
    q: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    limit: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(require_staff),
    registry: PublicationRegistry = Depends(get_registry),
):
    return registry.edit_activity(q=q, date_from=date_from, date_to=date_to, limit=limit)


@router.get("/notifications", response_model=List[RevisionNotice], summary="Revision requests for the caller")
def revision_notifications(actor: Actor = Depends(get_actor), registry: PublicationRegistry = Depends(get_registry)):
    with http_errors():
        return registry.revision_notifications(actor)


# ========== PEOPLE ==========


@router.get("/people", response_model=List[PersonMatch], summary="Look up people by name")
def search_people(
    q: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=50),
    actor: Actor = Depends(get_actor),
    registry: PublicationRegistry = Depends(get_registry),
):
    """Case-insensitive name match for the author entry form; a blank ``q`` returns nothing."""
    return registry.search_people(q, limit)


# ========== CATALOGUES ==========


@router.get("/categories", response_model=List[Category], summary="List categories")
def list_categories(q: Optional[str] = None, registry: PublicationRegistry = Depends(get_registry)):
    with http_errors():
        return registry.list_categories(q)


@router.post("/categories", response_model=Category, status_code=201, summary="Create a category")
def add_category(
    request: CategoryRequest,
    actor: Actor = Depends(require_staff),
    registry: PublicationRegistry = Depends(get_registry),
):
    with http_errors():
        return registry.add_category(actor, request.category_name)


@router.patch("/categories/{category_id}", response_model=Category, summary="Activate or deactivate a category")
def set_category_status(
    category_id: int,
    request: CategoryStatusRequest,
    actor: Actor = Depends(require_staff),
    registry: PublicationRegistry = Depends(get_registry),
):
    with http_errors():
        return registry.set_category_status(actor, category_id, request.status)


@router.get("/venues", response_model=List[Venue], summary="List venues")
def list_venues(q: Optional[str] = None, registry: PublicationRegistry = Depends(get_registry)):
    with http_errors():
        return registry.list_venues(q)


@router.post("/venues", response_model=Venue, status_code=201, summary="Create a venue")
def add_venue(venue: Venue, actor: Actor = Depends(get_actor), registry: PublicationRegistry = Depends(get_registry)):
    with http_errors():
        return registry.add_venue(venue)
