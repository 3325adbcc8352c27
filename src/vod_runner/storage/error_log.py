"""Append-only error log backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import func
from sqlmodel import Session, col, select

from vod_runner.storage.alembic_runner import upgrade_head
from vod_runner.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from vod_runner.storage.sqlmodel_models import ErrorRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ErrorRecordView:
    """One terminal failure as stored in the log."""

    record_id: int
    created_at: datetime
    source: str
    category: str | None
    message: str
    context: dict[str, Any] = field(default_factory=dict)


class ErrorSink(Protocol):
    """Anything that accepts terminal failure records."""

    def record(
        self,
        message: str,
        *,
        source: str,
        category: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> object:
        """Append one failure record."""


class ErrorLogRepository:
    """Error log persistence facade."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def record(
        self,
        message: str,
        *,
        source: str,
        category: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> ErrorRecordView:
        """Append one record stamped with the current time."""

        with Session(self.engine) as session:
            row = ErrorRecord(
                created_at=to_db_datetime(utc_now()),
                source=source,
                category=category,
                message=message,
                context_json=json.dumps(context or {}, ensure_ascii=False, default=str),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_view(row)

    def list_recent(self, *, limit: int = 50, category: str | None = None) -> list[ErrorRecordView]:
        """Newest records first."""

        with Session(self.engine) as session:
            query = select(ErrorRecord)
            if category is not None:
                query = query.where(ErrorRecord.category == category)
            rows = session.exec(
                query.order_by(col(ErrorRecord.record_id).desc()).limit(limit),
            ).all()
            return [_to_view(row) for row in rows]

    def count(self, *, category: str | None = None) -> int:
        with Session(self.engine) as session:
            query = select(func.count()).select_from(ErrorRecord)
            if category is not None:
                query = query.where(ErrorRecord.category == category)
            return int(session.exec(query).one())


def _to_view(row: ErrorRecord) -> ErrorRecordView:
    try:
        context = json.loads(row.context_json)
    except json.JSONDecodeError:
        logger.debug("Unreadable error log context for record %s", row.record_id)
        context = {}
    return ErrorRecordView(
        record_id=row.record_id or 0,
        created_at=to_utc_aware_datetime(row.created_at),
        source=row.source,
        category=row.category,
        message=row.message,
        context=context if isinstance(context, dict) else {},
    )
