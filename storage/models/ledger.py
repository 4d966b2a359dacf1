"""
Append-only ledgers: status history and the field-level edit log.

Rows are never updated. They are removed only together with their
publication.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel

from pub_registry.base import utcnow


class StatusHistory(SQLModel, table=True):
    __tablename__ = "status_history"

    history_id: Optional[int] = Field(default=None, primary_key=True)
    pub_id: int = Field(foreign_key="publication.pub_id", index=True)
    status: str
    changed_by: Optional[int] = None
    note: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    changed_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))


class EditLog(SQLModel, table=True):
    __tablename__ = "edit_log"

    edit_id: Optional[int] = Field(default=None, primary_key=True)
    pub_id: int = Field(foreign_key="publication.pub_id", index=True)
    user_id: Optional[int] = None
    field_name: str
    old_value: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    new_value: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    edited_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False))
