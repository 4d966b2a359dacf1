"""
Criteria query engine.

One implementation of the publication filter shared by staff search, the
professor's own list, public search, reports and facets. It composes id sets
from a :class:`CriteriaResolverInterface`:

1. every author term and every category term yields an id set, and the sets
   are intersected (AND semantics), stopping early once the result is empty;
2. the ownership and "with students" restrictions are intersected in;
3. scalar filters (status, level, year range, attachment, venue type, text)
   are matched by the backend and narrowed to the id set.

Matches are ordered by year (newest first, unknown years last) and then by
pub_id descending, so pages are stable between calls.
"""

import logging
from typing import Any, Mapping, Optional, Union

from .base import PersonType, SearchScope
from .entity import MatchKey, PublicationRow, SearchFilters, SearchPage
from .storage.interfaces import RegistryStorageInterface

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50

FilterInput = Union[SearchFilters, Mapping[str, Any], None]


def coerce_filters(filters: FilterInput) -> SearchFilters:
    if filters is None:
        return SearchFilters()
    if isinstance(filters, SearchFilters):
        return filters
    return SearchFilters.model_validate(dict(filters))


def order_key(key: MatchKey) -> tuple:
    return (key.year is None, -(key.year or 0), -key.pub_id)


def clamp_page(page: Any, page_size: Any, default_size: int = DEFAULT_PAGE_SIZE, max_size: int = MAX_PAGE_SIZE) -> tuple[int, int]:
    """
    Example:
        >>> clamp_page("0", 500)
        (1, 50)
        >>> clamp_page(3, None)
        (3, 10)
    """
    page = _as_int(page, 1)
    page_size = _as_int(page_size, default_size)
    return max(page, 1), min(max(page_size, 1), max_size)


def _as_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def resolve_matches(storage: RegistryStorageInterface, filters: FilterInput) -> list[MatchKey]:
    """All publications matching ``filters``, in result order."""
    filters = coerce_filters(filters)
    resolver = storage.criteria
    candidates: Optional[set[int]] = None

    def narrow(ids: set[int]) -> bool:
        nonlocal candidates
        candidates = set(ids) if candidates is None else candidates & ids
        return bool(candidates)

    for term in filters.authors:
        if not narrow(resolver.ids_for_author_term(term)):
            return []
    for term in filters.categories:
        if not narrow(resolver.ids_for_category_term(term)):
            return []
    if filters.q and filters.scope == SearchScope.AUTHOR:
        if not narrow(resolver.ids_for_author_term(filters.q)):
            return []
    if filters.owner_user_id is not None:
        if not narrow(resolver.ids_for_user(filters.owner_user_id, lead_only=filters.lead_only)):
            return []
    if filters.with_students:
        if not narrow(resolver.ids_with_person_type(PersonType.STUDENT.value)):
            return []

    keys = resolver.match_scalar_filters(filters)
    if candidates is not None:
        keys = [key for key in keys if key.pub_id in candidates]
    keys.sort(key=order_key)
    return keys


def search(
    storage: RegistryStorageInterface,
    filters: FilterInput,
    page: Any = 1,
    page_size: Any = None,
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> SearchPage:
    """One page of matching publications with their author and category names."""
    page, page_size = clamp_page(page, page_size, default_page_size, max_page_size)
    keys = resolve_matches(storage, filters)

    start = (page - 1) * page_size
    page_ids = [key.pub_id for key in keys[start : start + page_size]]
    rows: list[PublicationRow] = []
    if page_ids:
        summaries = storage.criteria.fetch_summaries(page_ids)
        authors = storage.relations.authors_for(page_ids)
        categories = storage.relations.categories_for(page_ids)
        for pub_id in page_ids:
            summary = summaries.get(pub_id)
            if summary is None:
                continue
            rows.append(
                summary.model_copy(
                    update={
                        "authors": [link.full_name for link in authors.get(pub_id, [])],
                        "categories": categories.get(pub_id, []),
                    }
                )
            )

    logger.debug("Search matched %d publications, returning page %d (%d rows)", len(keys), page, len(rows))
    return SearchPage(rows=rows, total=len(keys), page=page, page_size=page_size)
