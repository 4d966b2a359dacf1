"""
SQLModel persistence models for database storage.

This package contains the database schema definitions using SQLModel,
which map domain objects to database tables.

Available Models:

- **publication**: publications, venues, persons, authorships, categories
  and category assignments
- **ledger**: append-only status history and edit log

Example:

    >>> from pub_registry.storage.models.publication import Publication
    >>> from pub_registry.storage.models.ledger import StatusHistory
    >>>
    >>> # These are persistence models, typically used via mapper functions
    >>> # See mapper.py for domain <-> persistence conversion
"""

__all__ = [
    "publication",
    "ledger",
]
