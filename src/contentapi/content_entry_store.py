from __future__ import annotations

import sqlite3
from datetime import datetime

import structlog

from .contract import (
    CONTENT_ENTRY_ORDER_COLUMNS,
    DEFAULT_ENTRY_STATUS,
    ContentEntryV1,
    ensure_json_text,
    parse_dt,
    resolve_order,
    serialize_dt,
    utcnow,
)
from .errors import NotFoundError
from .runtime_db import RuntimeDatabase, integrity_error

logger = structlog.get_logger(__name__)

_COLUMNS = "id, content_type_id, data, status, created_by, created_at, updated_at, published_at"


def _not_found(entry_id: int) -> NotFoundError:
    return NotFoundError(
        code="CONTENT_ENTRY_NOT_FOUND",
        message=f"Content entry '{entry_id}' was not found.",
    )


class ContentEntryStore:
    def __init__(self, database: RuntimeDatabase) -> None:
        self._db = database

    def create(
        self,
        content_type_id: int,
        data: str,
        status: str = DEFAULT_ENTRY_STATUS,
        created_by: int | None = None,
        published_at: datetime | None = None,
        *,
        deadline: float | None = None,
    ) -> ContentEntryV1:
        ensure_json_text(data, field="data")
        timestamp = serialize_dt(utcnow())
        try:
            with self._db.connect(deadline=deadline) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO content_entries (
                        content_type_id,
                        data,
                        status,
                        created_by,
                        created_at,
                        updated_at,
                        published_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        content_type_id,
                        data,
                        status or DEFAULT_ENTRY_STATUS,
                        created_by,
                        timestamp,
                        timestamp,
                        serialize_dt(published_at) if published_at is not None else None,
                    ),
                )
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM content_entries WHERE id = ?",
                    (cursor.lastrowid,),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            # created_by always comes from a live session user.
            raise integrity_error(
                exc,
                unique={},
                foreign_key=(
                    "CONTENT_TYPE_NOT_FOUND",
                    f"Content type '{content_type_id}' was not found.",
                ),
            ) from exc

        entry = self._from_row(row)
        logger.info(
            "content_entry.created",
            content_entry_id=entry.id,
            content_type_id=content_type_id,
            status=entry.status,
        )
        return entry

    def get(self, entry_id: int, *, deadline: float | None = None) -> ContentEntryV1:
        with self._db.connect(deadline=deadline) as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM content_entries WHERE id = ?",
                (entry_id,),
            ).fetchone()
        if row is None:
            raise _not_found(entry_id)
        return self._from_row(row)

    def list(
        self,
        content_type_id: int,
        limit: int,
        offset: int,
        order_by: str | None = None,
        order_direction: str | None = None,
        *,
        deadline: float | None = None,
    ) -> tuple[list[ContentEntryV1], int]:
        column, direction = resolve_order(order_by, order_direction, CONTENT_ENTRY_ORDER_COLUMNS)
        with self._db.connect(deadline=deadline) as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM content_entries
                WHERE content_type_id = ?
                ORDER BY {column} {direction}, id {direction}
                LIMIT ? OFFSET ?
                """,
                (content_type_id, limit, offset),
            ).fetchall()
            total = conn.execute(
                "SELECT COUNT(*) FROM content_entries WHERE content_type_id = ?",
                (content_type_id,),
            ).fetchone()[0]
        return [self._from_row(row) for row in rows], int(total)

    def count(self, content_type_id: int, *, deadline: float | None = None) -> int:
        with self._db.connect(deadline=deadline) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM content_entries WHERE content_type_id = ?",
                (content_type_id,),
            ).fetchone()
        return int(row[0])

    def update(
        self,
        entry_id: int,
        *,
        data: str | None = None,
        status: str | None = None,
        published_at: datetime | None = None,
        clear_published_at: bool = False,
        deadline: float | None = None,
    ) -> None:
        """Apply a partial update; ``None`` leaves a field unchanged.

        ``clear_published_at`` resets the publication time to NULL and wins over
        ``published_at``.
        """
        if data is not None:
            ensure_json_text(data, field="data")
        with self._db.connect(deadline=deadline) as conn:
            cursor = conn.execute(
                """
                UPDATE content_entries
                SET
                    data = COALESCE(?, data),
                    status = COALESCE(?, status),
                    published_at = CASE WHEN ? THEN NULL ELSE COALESCE(?, published_at) END,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    data,
                    status,
                    1 if clear_published_at else 0,
                    serialize_dt(published_at) if published_at is not None else None,
                    serialize_dt(utcnow()),
                    entry_id,
                ),
            )
            if cursor.rowcount == 0:
                raise _not_found(entry_id)
        logger.info("content_entry.updated", content_entry_id=entry_id)

    def delete(self, entry_id: int, *, deadline: float | None = None) -> None:
        with self._db.connect(deadline=deadline) as conn:
            cursor = conn.execute("DELETE FROM content_entries WHERE id = ?", (entry_id,))
            if cursor.rowcount == 0:
                raise _not_found(entry_id)
        logger.info("content_entry.deleted", content_entry_id=entry_id)

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ContentEntryV1:
        return ContentEntryV1(
            id=int(row["id"]),
            content_type_id=int(row["content_type_id"]),
            data=str(row["data"]),
            status=str(row["status"]),
            created_by=int(row["created_by"]) if row["created_by"] is not None else None,
            created_at=parse_dt(str(row["created_at"])),
            updated_at=parse_dt(str(row["updated_at"])),
            published_at=parse_dt(str(row["published_at"])) if row["published_at"] is not None else None,
        )
