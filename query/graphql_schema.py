"""
GraphQL schema for the publication registry.

Read-only: search and report. The context carries the registry and the
caller (``None`` for anonymous requests). Anonymous callers only ever see
published records; identified callers get the same scope as the REST API.
"""

import strawberry
from typing import List, Optional
from strawberry.types import Info

from pub_registry.base import PublicationStatus
from pub_registry.entity import SearchFilters


@strawberry.type
class Publication:
    """Search result row GraphQL type."""
    pub_id: int
    status: str
    title: Optional[str] = None
    venue_name: Optional[str] = None
    venue_type: Optional[str] = None
    level: Optional[str] = None
    year: Optional[int] = None
    has_attachment: bool = False
    link_url: Optional[str] = None
    authors: List[str] = strawberry.field(default_factory=list)
    categories: List[str] = strawberry.field(default_factory=list)


@strawberry.type
class SearchResult:
    rows: List[Publication]
    total: int
    page: int
    page_size: int


@strawberry.type
class Totals:
    all: int
    draft: int
    under_review: int
    needs_revision: int
    published: int
    archived: int
    with_students: int


@strawberry.type
class YearCount:
    year: int
    count: int


@strawberry.type
class AuthorCount:
    person_id: int
    name: str
    total: int
    published: int
    under_review: int


@strawberry.type
class Report:
    totals: Totals
    by_year: List[YearCount]
    top_authors: List[AuthorCount]


@strawberry.input
class PublicationFilter:
    """Same filter surface as the REST search; list fields are AND/OR as documented there."""
    q: Optional[str] = None
    scope: Optional[str] = None
    statuses: Optional[List[str]] = None
    levels: Optional[List[str]] = None
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    has_attachment: Optional[bool] = None
    venue_types: Optional[List[str]] = None
    authors: Optional[List[str]] = None
    categories: Optional[List[str]] = None
    with_students: Optional[bool] = None


def _filters(where: Optional[PublicationFilter]) -> SearchFilters:
    if where is None:
        return SearchFilters()
    return SearchFilters.model_validate({k: v for k, v in vars(where).items() if v is not None})


def _value(enum_or_none) -> Optional[str]:
    return enum_or_none.value if hasattr(enum_or_none, "value") else enum_or_none


@strawberry.type
class Query:
    @strawberry.field
    def search(
        self,
        info: Info,
        where: Optional[PublicationFilter] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        published_only: bool = True,
    ) -> SearchResult:
        """Search publications. ``published_only`` is forced for anonymous callers."""
        registry = info.context["registry"]
        filters = _filters(where)
        if published_only or info.context.get("actor") is None:
            result = registry.public_search(filters, page, page_size)
        else:
            result = registry.search(filters, page, page_size)
        return SearchResult(
            rows=[
                Publication(
                    pub_id=row.pub_id,
                    title=row.title,
                    venue_name=row.venue_name,
                    venue_type=_value(row.venue_type),
                    level=_value(row.level),
                    year=row.year,
                    status=_value(row.status),
                    has_attachment=row.has_attachment,
                    link_url=row.link_url,
                    authors=row.authors,
                    categories=row.categories,
                )
                for row in result.rows
            ],
            total=result.total,
            page=result.page,
            page_size=result.page_size,
        )

    @strawberry.field
    def report(self, info: Info, where: Optional[PublicationFilter] = None) -> Report:
        """
        Totals, per-year counts and top authors over the filtered set. Staff
        see every record, professors their own, anonymous callers published
        records only.
        """
        registry = info.context["registry"]
        actor = info.context.get("actor")
        filters = _filters(where)
        if actor is None:
            filters = filters.model_copy(update={"statuses": [PublicationStatus.PUBLISHED.value]})
        elif not actor.is_staff:
            filters = filters.model_copy(update={"owner_user_id": actor.user_id})
        report = registry.report(filters)
        return Report(
            totals=Totals(**report.totals.model_dump()),
            by_year=[YearCount(year=y.year, count=y.count) for y in report.by_year],
            top_authors=[AuthorCount(**a.model_dump()) for a in report.top_authors],
        )
