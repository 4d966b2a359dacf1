"""
SQLModel persistence models for publications and their relations.

Enums are stored as plain strings so the same tables work on PostgreSQL and
on SQLite.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel

from pub_registry.base import utcnow


class Venue(SQLModel, table=True):
    __tablename__ = "venue"

    venue_id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(index=True)  # JOURNAL | CONFERENCE | BOOK | OTHER
    name: Optional[str] = None


class Publication(SQLModel, table=True):
    __tablename__ = "publication"

    pub_id: Optional[int] = Field(default=None, primary_key=True)
    title: Optional[str] = Field(default=None, index=True)
    venue_id: Optional[int] = Field(default=None, foreign_key="venue.venue_id")
    venue_name: Optional[str] = None
    level: Optional[str] = Field(default=None, index=True)
    year: Optional[int] = Field(default=None, index=True)
    abstract: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    link_url: Optional[str] = Field(default=None, index=True)
    has_attachment: bool = Field(default=False)
    attachment_path: Optional[str] = None
    status: str = Field(default="draft", index=True)
    owner_user_id: Optional[int] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))


class Person(SQLModel, table=True):
    __tablename__ = "person"

    person_id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str = Field(index=True)
    # Natural dedup key, but not unique: legacy rows may share an address.
    email: Optional[str] = Field(default=None, index=True)
    affiliation: Optional[str] = None
    person_type: Optional[str] = Field(default=None, index=True)
    user_id: Optional[int] = Field(default=None, index=True)


class Authorship(SQLModel, table=True):
    __tablename__ = "authorship"

    pub_id: int = Field(primary_key=True, foreign_key="publication.pub_id")
    author_order: int = Field(primary_key=True)
    person_id: int = Field(foreign_key="person.person_id", index=True)
    role: Optional[str] = None


class Category(SQLModel, table=True):
    __tablename__ = "category"

    category_id: Optional[int] = Field(default=None, primary_key=True)
    category_name: str = Field(unique=True, index=True)
    status: str = Field(default="ACTIVE")
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))


class CategoryAssignment(SQLModel, table=True):
    __tablename__ = "category_assignment"

    pub_id: int = Field(primary_key=True, foreign_key="publication.pub_id")
    category_id: int = Field(primary_key=True, foreign_key="category.category_id")
