"""SQLModel ORM tables for runner storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class ErrorRecord(SQLModel, table=True):
    __tablename__ = "error_log"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_error_log_category_created", "category", "created_at"),)

    record_id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    source: str = Field(index=True)
    category: str | None = None
    message: str = Field(sa_column=Column(Text, nullable=False))
    context_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
