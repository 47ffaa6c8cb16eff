"""Session tokens handed out after a successful ceremony.

The client only ever sees the sealed form of a session id (see
``security.seal_session``). Expiry is enforced by the query itself, so an
expired row is inert even if ``sweep`` never runs.
"""

import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from .db import epoch_now, session_scope
from .logs import get_logger
from .models import AuthSession
from .security import open_session, seal_session

SESSION_TTL_SECONDS = 7 * 24 * 60 * 60

logger = get_logger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: int
    max_age: int = SESSION_TTL_SECONDS


class SessionIssuer:
    def __init__(
        self,
        secret: str,
        session_factory: sessionmaker | None = None,
        now: Callable[[], int] = epoch_now,
    ):
        if not secret:
            raise ValueError("session secret must not be empty")
        self._secret = secret
        self._factory = session_factory
        self._now = now

    def issue(self, user_id: str) -> IssuedSession:
        sid = secrets.token_urlsafe(32)
        expires_at = self._now() + SESSION_TTL_SECONDS
        with session_scope(self._factory) as db:
            db.add(AuthSession(id=sid, user_id=user_id, expires_at=expires_at))
        return IssuedSession(token=seal_session(sid, self._secret, expires_at), expires_at=expires_at)

    def validate(self, token: Optional[str]) -> Optional[str]:
        """Return the owning user id, or None for a bad, unknown or expired token."""
        if not token:
            return None
        sid = open_session(token, self._secret)
        if sid is None:
            return None
        with session_scope(self._factory) as db:
            return db.scalars(
                select(AuthSession.user_id).where(AuthSession.id == sid, AuthSession.expires_at > self._now())
            ).one_or_none()

    def revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        sid = open_session(token, self._secret, verify_exp=False)
        if sid is None:
            return
        with session_scope(self._factory) as db:
            db.execute(delete(AuthSession).where(AuthSession.id == sid))

    def sweep(self) -> int:
        with session_scope(self._factory) as db:
            result = db.execute(delete(AuthSession).where(AuthSession.expires_at <= self._now()))
            removed = result.rowcount or 0
        if removed:
            logger.info("swept %d expired sessions", removed)
        return removed
