"""
Publication registry.

Professors submit publication records, staff review and approve them, and
the public searches what has been published. The package is organized as:

- ``base`` / ``entity``: enums and Pydantic domain models
- ``store`` / ``workflow`` / ``audit``: write-side rules
- ``criteria`` / ``report``: the shared filter engine and aggregations
- ``registry``: the operations exposed to adapters
- ``storage``: interfaces, SQLite and SQLModel backends, table models
- ``query``: FastAPI/GraphQL adapters and a fluent query client

Table models are not imported here, so importing the package does not
register any SQLModel metadata.
"""

__version__ = "0.1.0"
