"""
Mapper functions to convert between Domain Models and Persistence Models.

This module bridges the gap between:
- Domain Models (entity.py) - Pydantic classes for application logic
- Persistence rows - SQLModel tables (storage/models) or ``sqlite3.Row``
  mappings from the SQLite backend

Both row flavours are normalized to plain dicts first, so each conversion is
written once.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .entity import (
    AuthorLink,
    Category,
    EditActivity,
    EditLogEntry,
    Person,
    PublicationFields,
    PublicationRecord,
    PublicationRow,
    StatusHistoryEntry,
    Venue,
)


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Accept a SQLModel instance, a SQLAlchemy Row or a sqlite3.Row."""
    if hasattr(row, "model_dump"):
        return row.model_dump()
    if hasattr(row, "_mapping"):
        return dict(row._mapping)
    return dict(row)


def column_value(value: Any) -> Any:
    """Enums are stored by value."""
    if isinstance(value, Enum):
        return value.value
    return value


def to_columns(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: column_value(value) for key, value in values.items()}


def publication_columns(fields: PublicationFields, owner_user_id: Optional[int]) -> Dict[str, Any]:
    """
    Column values for a new publication row.

    Example:
        >>> cols = publication_columns(PublicationFields(title="T", level="national"), 7)
        >>> cols["level"], cols["status"], cols["owner_user_id"]
        ('NATIONAL', 'draft', 7)
    """
    values = to_columns(fields.model_dump())
    values["owner_user_id"] = owner_user_id
    return values


def publication_to_domain(row: Any) -> PublicationRecord:
    return PublicationRecord.model_validate(row_to_dict(row))


def person_to_domain(row: Any) -> Person:
    return Person.model_validate(row_to_dict(row))


def category_to_domain(row: Any) -> Category:
    return Category.model_validate(row_to_dict(row))


def venue_to_domain(row: Any) -> Venue:
    return Venue.model_validate(row_to_dict(row))


def author_link_to_domain(row: Any) -> AuthorLink:
    return AuthorLink.model_validate(row_to_dict(row))


def status_entry_to_domain(row: Any) -> StatusHistoryEntry:
    return StatusHistoryEntry.model_validate(row_to_dict(row))


def edit_entry_to_domain(row: Any) -> EditLogEntry:
    return EditLogEntry.model_validate(row_to_dict(row))


def edit_activity_to_domain(row: Any) -> EditActivity:
    return EditActivity.model_validate(row_to_dict(row))


def summary_to_domain(row: Any) -> PublicationRow:
    """A search row without authors and categories; those are attached per page."""
    return PublicationRow.model_validate(row_to_dict(row))


def group_by_pub(rows: Iterable[Mapping[str, Any]], value_key: Optional[str] = None) -> Dict[int, List[Any]]:
    """Group joined rows by ``pub_id`` preserving row order."""
    grouped: Dict[int, List[Any]] = {}
    for row in rows:
        data = row_to_dict(row)
        pub_id = data.pop("pub_id")
        grouped.setdefault(pub_id, []).append(data[value_key] if value_key else data)
    return grouped
