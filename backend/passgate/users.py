import re
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .db import session_scope
from .errors import ValidationError
from .logs import get_logger
from .models import User

USERNAME_MAX_LENGTH = 64
USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{1,64}$")

logger = get_logger(__name__)


@dataclass(frozen=True)
class UserRecord:
    id: str
    username: str


def validate_username(username) -> str:
    if not isinstance(username, str) or not USERNAME_RE.fullmatch(username):
        raise ValidationError("username must be 1-64 characters of [A-Za-z0-9_]")
    return username


class UserDirectory:
    def __init__(self, session_factory: sessionmaker | None = None):
        self._factory = session_factory

    def get(self, user_id: str) -> Optional[UserRecord]:
        with session_scope(self._factory) as db:
            user = db.get(User, user_id)
            return UserRecord(user.id, user.username) if user else None

    def get_by_username(self, username: str) -> Optional[UserRecord]:
        with session_scope(self._factory) as db:
            user = db.scalars(select(User).where(User.username == username)).one_or_none()
            return UserRecord(user.id, user.username) if user else None

    def resolve_or_create(self, username: str) -> UserRecord:
        existing = self.get_by_username(username)
        if existing:
            return existing
        user_id = uuid.uuid4().hex
        try:
            with session_scope(self._factory) as db:
                db.add(User(id=user_id, username=username))
        except IntegrityError:
            # lost an insert race on the unique username; use the winner's row
            winner = self.get_by_username(username)
            if winner is None:
                raise
            return winner
        logger.info("created user %s", user_id)
        return UserRecord(user_id, username)
