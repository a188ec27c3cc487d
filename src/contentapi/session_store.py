from __future__ import annotations

import os
import secrets
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from threading import Condition, Lock

import structlog

from .contract import SessionV1, utcnow
from .errors import InternalError

logger = structlog.get_logger(__name__)

SESSION_TTL = timedelta(hours=24)
TOKEN_BYTES = 32


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = Condition(Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _default_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class SessionStore:
    """In-memory token -> session map.

    Sessions are not persisted and are lost on restart. Expired sessions read as absent
    and are dropped at lookup or by ``purge_expired``.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = SESSION_TTL,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = _default_token,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._token_factory = token_factory
        self._sessions: dict[str, SessionV1] = {}
        self._lock = ReadWriteLock()

    @classmethod
    def from_env(cls) -> "SessionStore":
        hours = float(os.getenv("CONTENTAPI_SESSION_TTL_HOURS", "24"))
        return cls(ttl=timedelta(hours=hours))

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._sessions)

    def create_session(self, user_id: int, email: str) -> str:
        try:
            token = self._token_factory()
        except (OSError, NotImplementedError) as exc:
            logger.error("session.token_generation_failed", error=str(exc))
            raise InternalError(
                code="TOKEN_GENERATION_FAILED",
                message="Could not create a session.",
            ) from exc

        session = SessionV1(
            token=token,
            user_id=user_id,
            email=email,
            expires_at=self._clock() + self._ttl,
        )
        with self._lock.write_locked():
            self._sessions[token] = session
        logger.info("session.created", user_id=user_id, expires_at=session.expires_at.isoformat())
        return token

    def get_session(self, token: str) -> SessionV1 | None:
        if not token:
            return None
        with self._lock.read_locked():
            session = self._sessions.get(token)
        if session is None:
            return None
        if self._clock() < session.expires_at:
            return session

        with self._lock.write_locked():
            current = self._sessions.get(token)
            if current is not None and self._clock() >= current.expires_at:
                del self._sessions[token]
        return None

    def delete_session(self, token: str) -> None:
        with self._lock.write_locked():
            removed = self._sessions.pop(token, None)
        if removed is not None:
            logger.info("session.deleted", user_id=removed.user_id)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock.write_locked():
            expired = [token for token, session in self._sessions.items() if now >= session.expires_at]
            for token in expired:
                del self._sessions[token]
        if expired:
            logger.info("session.purged", count=len(expired))
        return len(expired)

    def close(self) -> None:
        with self._lock.write_locked():
            self._sessions.clear()
