"""
Aggregation over the publications a filter matches.

The report resolves its id set through :func:`criteria.resolve_matches`, the
same call search uses, so ``report.totals.all`` always equals the
``total`` of a search with the same filters.
"""

import logging
from collections import Counter
from typing import Any

from .base import PersonType, PublicationStatus
from .criteria import FilterInput, resolve_matches
from .entity import AuthorCount, FacetCount, Report, ReportTotals, YearCount
from .storage.interfaces import RegistryStorageInterface

logger = logging.getLogger(__name__)

TOP_AUTHORS_LIMIT = 5

# Statuses counted as "under review" in the per-author breakdown.
_IN_REVIEW = {PublicationStatus.UNDER_REVIEW.value, PublicationStatus.NEEDS_REVISION.value}


def build_report(storage: RegistryStorageInterface, filters: FilterInput, top_limit: int = TOP_AUTHORS_LIMIT) -> Report:
    keys = resolve_matches(storage, filters)
    if not keys:
        return Report()

    status_of = {key.pub_id: key.status for key in keys}
    ids = list(status_of)

    totals: dict[str, Any] = {"all": len(keys)}
    for status, count in Counter(status_of.values()).items():
        if status in ReportTotals.model_fields:
            totals[status] = count
    totals["with_students"] = len(set(ids) & storage.criteria.ids_with_person_type(PersonType.STUDENT.value))

    years = Counter(key.year for key in keys if key.year is not None)
    by_year = [YearCount(year=year, count=years[year]) for year in sorted(years)]

    return Report(
        totals=ReportTotals(**totals),
        by_year=by_year,
        top_authors=top_authors(storage, status_of, top_limit),
    )


def top_authors(storage: RegistryStorageInterface, status_of: dict[int, str], limit: int = TOP_AUTHORS_LIMIT) -> list[AuthorCount]:
    """Authors with the most matched publications; each publication counts once per author."""
    counted: dict[int, AuthorCount] = {}
    seen: set[tuple[int, int]] = set()
    for pub_id, links in storage.relations.authors_for(status_of).items():
        status = status_of[pub_id]
        for link in links:
            if (link.person_id, pub_id) in seen:
                continue
            seen.add((link.person_id, pub_id))
            entry = counted.setdefault(link.person_id, AuthorCount(person_id=link.person_id, name=link.full_name))
            entry.total += 1
            if status == PublicationStatus.PUBLISHED.value:
                entry.published += 1
            elif status in _IN_REVIEW:
                entry.under_review += 1

    ranked = sorted(counted.values(), key=lambda a: (-a.total, a.name.casefold(), a.person_id))
    return ranked[: max(limit, 0)]


def build_facets(storage: RegistryStorageInterface, filters: FilterInput) -> list[FacetCount]:
    """Category names over the matched set, most used first."""
    ids = [key.pub_id for key in resolve_matches(storage, filters)]
    counts: Counter = Counter()
    for names in storage.relations.categories_for(ids).values():
        counts.update(set(names))
    return [FacetCount(name=name, count=count) for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))]
