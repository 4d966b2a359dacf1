"""
Enumerations shared by the domain models, the persistence layer and the API.

All enums are ``str`` enums so they serialize as their value and compare
equal to the raw strings stored in the database.
"""

from datetime import datetime, timezone
from enum import Enum


class PublicationStatus(str, Enum):
    """
    Lifecycle states of a publication.

    The intended flow is::

        draft -> under_review -> published -> archived
                     |   ^
                     v   |
                needs_revision
    """

    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    NEEDS_REVISION = "needs_revision"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class PublicationLevel(str, Enum):
    NATIONAL = "NATIONAL"
    INTERNATIONAL = "INTERNATIONAL"


class PersonType(str, Enum):
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"
    EXTERNAL = "EXTERNAL"


class AuthorRole(str, Enum):
    LEAD = "LEAD"
    COAUTHOR = "COAUTHOR"
    CORRESPONDING = "CORRESPONDING"


class CategoryStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class VenueType(str, Enum):
    JOURNAL = "JOURNAL"
    CONFERENCE = "CONFERENCE"
    BOOK = "BOOK"
    OTHER = "OTHER"


class UserRole(str, Enum):
    """Roles issued by the identity provider."""

    ADMIN = "ADMIN"
    STAFF = "STAFF"
    PROFESSOR = "PROFESSOR"


class ReviewAction(str, Enum):
    """Staff review decisions and the status each one leads to."""

    APPROVE = "approve"
    REQUEST = "request"
    DRAFT = "draft"

    @property
    def target_status(self) -> PublicationStatus:
        return {
            ReviewAction.APPROVE: PublicationStatus.PUBLISHED,
            ReviewAction.REQUEST: PublicationStatus.NEEDS_REVISION,
            ReviewAction.DRAFT: PublicationStatus.DRAFT,
        }[self]


class SearchScope(str, Enum):
    """Which fields the free-text query is matched against."""

    ALL = "all"
    TITLE = "title"
    AUTHOR = "author"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
