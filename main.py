"""
Entrypoint for the publication registry API server.

This module imports and exposes the FastAPI application instance for uvicorn.
Run the server with:
    uvicorn pub_registry.main:app --reload
"""

from pub_registry.query.server import app

__all__ = ["app"]
