from __future__ import annotations

import sqlite3

import structlog

from .contract import (
    CONTENT_TYPE_ORDER_COLUMNS,
    ContentTypeV1,
    ensure_json_text,
    parse_dt,
    resolve_order,
    serialize_dt,
    utcnow,
)
from .errors import NotFoundError
from .runtime_db import RuntimeDatabase, integrity_error

logger = structlog.get_logger(__name__)

_COLUMNS = "id, name, slug, description, schema, created_at, updated_at"

_UNIQUE_ERRORS = {
    "content_types.name": ("CONTENT_TYPE_NAME_TAKEN", "A content type with this name already exists."),
    "content_types.slug": ("CONTENT_TYPE_SLUG_TAKEN", "A content type with this slug already exists."),
}


def _not_found(key: object) -> NotFoundError:
    return NotFoundError(
        code="CONTENT_TYPE_NOT_FOUND",
        message=f"Content type '{key}' was not found.",
    )


class ContentTypeStore:
    def __init__(self, database: RuntimeDatabase) -> None:
        self._db = database

    def create(
        self,
        name: str,
        slug: str,
        description: str,
        schema: str,
        *,
        deadline: float | None = None,
    ) -> ContentTypeV1:
        ensure_json_text(schema, field="schema")
        timestamp = serialize_dt(utcnow())
        try:
            with self._db.connect(deadline=deadline) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO content_types (name, slug, description, schema, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (name, slug, description, schema, timestamp, timestamp),
                )
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM content_types WHERE id = ?",
                    (cursor.lastrowid,),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise integrity_error(exc, unique=_UNIQUE_ERRORS) from exc

        content_type = self._from_row(row)
        logger.info("content_type.created", content_type_id=content_type.id, slug=content_type.slug)
        return content_type

    def get(self, content_type_id: int, *, deadline: float | None = None) -> ContentTypeV1:
        with self._db.connect(deadline=deadline) as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM content_types WHERE id = ?",
                (content_type_id,),
            ).fetchone()
        if row is None:
            raise _not_found(content_type_id)
        return self._from_row(row)

    def get_by_slug(self, slug: str, *, deadline: float | None = None) -> ContentTypeV1:
        with self._db.connect(deadline=deadline) as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM content_types WHERE slug = ?",
                (slug,),
            ).fetchone()
        if row is None:
            raise _not_found(slug)
        return self._from_row(row)

    def list(
        self,
        limit: int,
        offset: int,
        order_by: str | None = None,
        order_direction: str | None = None,
        *,
        deadline: float | None = None,
    ) -> tuple[list[ContentTypeV1], int]:
        column, direction = resolve_order(order_by, order_direction, CONTENT_TYPE_ORDER_COLUMNS)
        with self._db.connect(deadline=deadline) as conn:
            rows = conn.execute(
                f"""
                SELECT {_COLUMNS}
                FROM content_types
                ORDER BY {column} {direction}, id {direction}
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
            total = conn.execute("SELECT COUNT(*) FROM content_types").fetchone()[0]
        return [self._from_row(row) for row in rows], int(total)

    def update(
        self,
        content_type_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        schema: str | None = None,
        deadline: float | None = None,
    ) -> None:
        if schema is not None:
            ensure_json_text(schema, field="schema")
        try:
            with self._db.connect(deadline=deadline) as conn:
                cursor = conn.execute(
                    """
                    UPDATE content_types
                    SET
                        name = COALESCE(?, name),
                        description = COALESCE(?, description),
                        schema = COALESCE(?, schema),
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (name, description, schema, serialize_dt(utcnow()), content_type_id),
                )
                if cursor.rowcount == 0:
                    raise _not_found(content_type_id)
        except sqlite3.IntegrityError as exc:
            raise integrity_error(exc, unique=_UNIQUE_ERRORS) from exc
        logger.info("content_type.updated", content_type_id=content_type_id)

    def delete(self, content_type_id: int, *, deadline: float | None = None) -> None:
        with self._db.connect(deadline=deadline) as conn:
            cursor = conn.execute("DELETE FROM content_types WHERE id = ?", (content_type_id,))
            if cursor.rowcount == 0:
                raise _not_found(content_type_id)
        logger.info("content_type.deleted", content_type_id=content_type_id)

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ContentTypeV1:
        return ContentTypeV1(
            id=int(row["id"]),
            name=str(row["name"]),
            slug=str(row["slug"]),
            description=str(row["description"] or ""),
            schema=str(row["schema"]),
            created_at=parse_dt(str(row["created_at"])),
            updated_at=parse_dt(str(row["updated_at"])),
        )
