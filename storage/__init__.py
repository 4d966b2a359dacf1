"""
Storage layer for the publication registry.

This package keeps persistence apart from the registry rules.

Key Components:

- **interfaces**: Abstract base classes defining storage contracts
- **backends**: Concrete implementations (raw SQLite, SQLModel/PostgreSQL)
- **models**: SQLModel table definitions

Example:

    >>> from pub_registry.storage.backends.sqlite import SQLiteRegistryStorage
    >>>
    >>> # Create an in-memory SQLite storage
    >>> storage = SQLiteRegistryStorage(":memory:")
    >>> with storage.transaction():
    ...     pub_id = storage.publications.add({"title": "Notes", "status": "draft"})
"""

__all__ = [
    "interfaces",
    "backends",
    "models",
]
