"""Single-use, time-bound ceremony challenges.

A challenge row is written when a ceremony starts and removed when it
finishes, whatever the outcome. Reads never return an expired row: an
expired row found by ``fetch`` is deleted on the spot, so correctness does
not depend on ``sweep`` having run.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .db import epoch_now, session_scope
from .errors import ConflictError
from .logs import get_logger
from .models import Challenge

CHALLENGE_TTL_SECONDS = 5 * 60

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChallengeRecord:
    correlation_id: str
    challenge: str
    user_id: Optional[str]
    expires_at: int


def _record(row: Challenge) -> ChallengeRecord:
    return ChallengeRecord(
        correlation_id=row.id,
        challenge=row.challenge,
        user_id=row.user_id,
        expires_at=row.expires_at,
    )


class ChallengeLedger:
    def __init__(self, session_factory: sessionmaker | None = None, now: Callable[[], int] = epoch_now):
        self._factory = session_factory
        self._now = now

    def store(self, correlation_id: str, challenge: str, user_id: Optional[str] = None) -> ChallengeRecord:
        expires_at = self._now() + CHALLENGE_TTL_SECONDS
        with session_scope(self._factory) as db:
            db.add(Challenge(id=correlation_id, challenge=challenge, user_id=user_id, expires_at=expires_at))
            try:
                db.flush()
            except IntegrityError as exc:
                raise ConflictError(f"challenge {correlation_id} already exists") from exc
        return ChallengeRecord(correlation_id, challenge, user_id, expires_at)

    def fetch(self, correlation_id: str) -> Optional[ChallengeRecord]:
        with session_scope(self._factory) as db:
            row = db.get(Challenge, correlation_id)
            if row is None:
                return None
            if row.expires_at < self._now():
                db.delete(row)
                logger.debug("dropped expired challenge %s on read", correlation_id)
                return None
            return _record(row)

    def consume(self, correlation_id: str) -> bool:
        """Delete the challenge. Returns True only for the call that removed it."""
        with session_scope(self._factory) as db:
            result = db.execute(delete(Challenge).where(Challenge.id == correlation_id))
            return result.rowcount == 1

    def take(self, correlation_id: str) -> Optional[ChallengeRecord]:
        """Fetch and consume in one step.

        Concurrent callers may all read the row, but only the one whose
        DELETE removes it gets the record back. Expired rows are consumed
        and reported as missing.
        """
        with session_scope(self._factory) as db:
            row = db.get(Challenge, correlation_id)
            if row is None:
                return None
            record = _record(row)
            result = db.execute(delete(Challenge).where(Challenge.id == correlation_id))
            won = result.rowcount == 1
        if not won:
            logger.info("challenge %s already consumed by a concurrent finish", correlation_id)
            return None
        if record.expires_at < self._now():
            return None
        return record

    def sweep(self) -> int:
        with session_scope(self._factory) as db:
            result = db.execute(delete(Challenge).where(Challenge.expires_at < self._now()))
            removed = result.rowcount or 0
        if removed:
            logger.info("swept %d expired challenges", removed)
        return removed
