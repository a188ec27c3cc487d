from __future__ import annotations

import os
import sqlite3

import bcrypt
import structlog

from .contract import StoredUserV1, UserV1, parse_dt, serialize_dt, utcnow
from .errors import ConflictError, NotFoundError
from .runtime_db import RuntimeDatabase, integrity_error

logger = structlog.get_logger(__name__)

DEFAULT_BCRYPT_ROUNDS = 12


class UserStore:
    def __init__(self, database: RuntimeDatabase, *, bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self._db = database
        self._bcrypt_rounds = bcrypt_rounds

    @classmethod
    def from_env(cls, database: RuntimeDatabase) -> "UserStore":
        rounds = int(os.getenv("CONTENTAPI_BCRYPT_ROUNDS", str(DEFAULT_BCRYPT_ROUNDS)))
        return cls(database, bcrypt_rounds=rounds)

    def create_user(self, email: str, password: str, *, deadline: float | None = None) -> UserV1:
        """Register the single account.

        The insert only lands while the users table is empty, so two racing
        registrations cannot both succeed.
        """
        password_hash = self._hash_password(password)
        timestamp = serialize_dt(utcnow())
        try:
            with self._db.connect(deadline=deadline) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO users (email, password_hash, created_at, updated_at)
                    SELECT ?, ?, ?, ?
                    WHERE NOT EXISTS (SELECT 1 FROM users)
                    """,
                    (email, password_hash, timestamp, timestamp),
                )
                if cursor.rowcount == 0:
                    raise ConflictError(
                        code="REGISTRATION_CLOSED",
                        message="Registration is closed: an account is already registered.",
                    )
                row = conn.execute(
                    "SELECT id, email, password_hash, created_at, updated_at FROM users WHERE id = ?",
                    (cursor.lastrowid,),
                ).fetchone()
        except sqlite3.IntegrityError as exc:
            raise integrity_error(
                exc,
                unique={"users.email": ("USER_ALREADY_EXISTS", "A user with this email already exists.")},
            ) from exc

        user = self._user_from_row(row)
        logger.info("user.created", user_id=user.id)
        return user.public()

    def get_user_by_email(self, email: str, *, deadline: float | None = None) -> StoredUserV1:
        with self._db.connect(deadline=deadline) as conn:
            row = conn.execute(
                "SELECT id, email, password_hash, created_at, updated_at FROM users WHERE email = ?",
                (email,),
            ).fetchone()
        if row is None:
            raise NotFoundError(code="USER_NOT_FOUND", message="User was not found.")
        return self._user_from_row(row)

    def count_users(self, *, deadline: float | None = None) -> int:
        with self._db.connect(deadline=deadline) as conn:
            row = conn.execute("SELECT COUNT(*) FROM users").fetchone()
        return int(row[0])

    @staticmethod
    def check_password(user: StoredUserV1, password: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), user.password_hash.encode("utf-8"))
        except ValueError:
            # Unparseable stored hash.
            return False

    def _hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> StoredUserV1:
        return StoredUserV1(
            id=int(row["id"]),
            email=str(row["email"]),
            password_hash=str(row["password_hash"]),
            created_at=parse_dt(str(row["created_at"])),
            updated_at=parse_dt(str(row["updated_at"])),
        )
