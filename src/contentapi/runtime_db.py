from __future__ import annotations

import os
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from threading import Lock

import structlog

from .errors import ConflictError, InternalError, InvalidInputError, NotFoundError

logger = structlog.get_logger(__name__)

DEFAULT_BUSY_TIMEOUT_SECONDS = 30.0
_PROGRESS_HANDLER_STEPS = 1000

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS content_types (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    slug TEXT NOT NULL UNIQUE,
    description TEXT NOT NULL DEFAULT '',
    schema TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS content_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content_type_id INTEGER NOT NULL REFERENCES content_types(id) ON DELETE CASCADE,
    data TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    created_by INTEGER REFERENCES users(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    published_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_content_entries_type ON content_entries(content_type_id);
CREATE INDEX IF NOT EXISTS idx_content_entries_status ON content_entries(status);
"""


def deadline_after(seconds: float) -> float:
    """Return an absolute deadline on the monotonic clock."""
    return time.monotonic() + seconds


def _deadline_exceeded() -> InternalError:
    return InternalError(
        status_code=504,
        code="DEADLINE_EXCEEDED",
        message="The operation did not finish before its deadline.",
    )


class RuntimeDatabase:
    """Relational execution interface shared by the user, content-type and entry stores.

    Every call opens a short-lived connection. When a deadline is given it bounds both
    the lock wait (busy timeout) and statement execution (progress handler interrupt).
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path
        self._schema_lock = Lock()
        self._schema_ready = False

    @classmethod
    def from_env(cls) -> "RuntimeDatabase":
        raw = os.getenv("CONTENTAPI_RUNTIME_DB_PATH", "").strip()
        if raw:
            return cls(Path(raw).expanduser())
        return cls(Path.home() / ".cache" / "contentapi" / "runtime.v1.sqlite3")

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    @contextmanager
    def connect(self, *, deadline: float | None = None) -> Iterator[sqlite3.Connection]:
        timeout = DEFAULT_BUSY_TIMEOUT_SECONDS
        if deadline is not None:
            timeout = deadline - time.monotonic()
            if timeout <= 0:
                raise _deadline_exceeded()

        try:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._storage_path), timeout=timeout)
        except (OSError, sqlite3.Error) as exc:
            logger.error("database.connect_failed", path=str(self._storage_path), error=str(exc))
            raise InternalError(
                code="STORAGE_UNAVAILABLE",
                message="The content store is unavailable.",
            ) from exc

        conn.row_factory = sqlite3.Row
        if deadline is not None:
            conn.set_progress_handler(
                lambda: 1 if time.monotonic() >= deadline else 0,
                _PROGRESS_HANDLER_STEPS,
            )
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema(conn)
            yield conn
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as exc:
            conn.rollback()
            if deadline is not None and time.monotonic() >= deadline:
                raise _deadline_exceeded() from exc
            logger.error("database.operation_failed", error=str(exc))
            raise InternalError(
                code="STORAGE_FAILURE",
                message="The content store failed to complete the operation.",
            ) from exc
        except (OverflowError, UnicodeEncodeError) as exc:
            # sqlite3 refuses integers beyond 64 bits and text that is not valid UTF-8.
            conn.rollback()
            raise InvalidInputError(
                code="UNSTORABLE_VALUE",
                message="A value cannot be stored: it must be a 64-bit integer or valid UTF-8 text.",
            ) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            conn.executescript(_SCHEMA)
            self._schema_ready = True
            logger.debug("database.schema_ready", path=str(self._storage_path))


def integrity_error(
    exc: sqlite3.IntegrityError,
    *,
    unique: dict[str, tuple[str, str]],
    foreign_key: tuple[str, str] | None = None,
) -> ConflictError | NotFoundError | InternalError:
    """Translate a constraint violation into the error taxonomy.

    ``unique`` maps a ``table.column`` named in SQLite's message to ``(code, message)``.
    """
    text = str(exc)
    if "UNIQUE constraint failed" in text:
        for column, (code, message) in unique.items():
            if column in text:
                return ConflictError(code=code, message=message, details={"field": column.split(".")[-1]})
        return ConflictError(code="UNIQUE_CONSTRAINT", message="A record with the same key already exists.")
    if "FOREIGN KEY constraint failed" in text and foreign_key is not None:
        code, message = foreign_key
        return NotFoundError(code=code, message=message)
    return InternalError(code="STORAGE_FAILURE", message="The content store rejected the write.")
