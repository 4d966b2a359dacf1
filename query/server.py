"""
FastAPI application for the publication registry.

REST routes live under ``API_V1_STR``; the read-only GraphQL schema is
served at ``/graphql``. Both resolve the registry through the same
per-request dependency.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
import strawberry
from strawberry.fastapi import GraphQLRouter

from .storage_factory import close_storage, get_engine, get_registry
from .routers import rest_api
from .routers.rest_api import get_optional_actor
from .graphql_schema import Query
from pub_registry.config import get_settings
from pub_registry.entity import Actor
from pub_registry.registry import PublicationRegistry

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """The engine is built once per process and disposed on shutdown."""
    get_engine()
    logger.info("%s %s started", settings.PROJECT_NAME, settings.VERSION)
    yield
    close_storage()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API for submitting, reviewing and searching publication records.",
    version=settings.VERSION,
    lifespan=lifespan,
)

app.include_router(rest_api.router, prefix=settings.API_V1_STR)


async def get_graphql_context(
    registry: PublicationRegistry = Depends(get_registry),
    actor: Optional[Actor] = Depends(get_optional_actor),
):
    return {"registry": registry, "actor": actor}


graphql_schema = strawberry.Schema(query=Query)
app.include_router(GraphQLRouter(graphql_schema, context_getter=get_graphql_context), prefix="/graphql")


@app.get("/health")
async def health_check():
    return {"status": "ok"}
