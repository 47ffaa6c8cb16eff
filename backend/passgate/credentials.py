"""Public-key credential storage and the signature-counter gate."""

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .db import session_scope
from .errors import ConflictError
from .logs import get_logger, log_security_event
from .models import Credential

logger = get_logger(__name__)


@dataclass(frozen=True)
class CredentialRecord:
    id: str
    user_id: str
    public_key: bytes
    counter: int


class CredentialVault:
    def __init__(self, session_factory: sessionmaker | None = None):
        self._factory = session_factory

    def register(self, user_id: str, credential_id: str, public_key: bytes) -> CredentialRecord:
        with session_scope(self._factory) as db:
            db.add(Credential(id=credential_id, user_id=user_id, public_key=public_key, counter=0))
            try:
                db.flush()
            except IntegrityError as exc:
                raise ConflictError("credential already registered") from exc
        logger.info("registered credential for user %s", user_id)
        return CredentialRecord(credential_id, user_id, public_key, 0)

    def lookup(self, credential_id: str) -> Optional[CredentialRecord]:
        with session_scope(self._factory) as db:
            cred = db.get(Credential, credential_id)
            if cred is None:
                return None
            return CredentialRecord(cred.id, cred.user_id, cred.public_key, cred.counter)

    def list_for_user(self, user_id: str) -> List[str]:
        with session_scope(self._factory) as db:
            return list(db.scalars(select(Credential.id).where(Credential.user_id == user_id)))

    def advance_counter(self, credential_id: str, new_counter: int) -> bool:
        """Move the stored counter forward to ``new_counter``.

        One conditional UPDATE: nothing changes unless the credential exists
        and ``new_counter`` is strictly greater than the stored value. A
        False return means a possibly cloned authenticator and must fail the
        authentication.
        """
        with session_scope(self._factory) as db:
            result = db.execute(
                update(Credential)
                .where(Credential.id == credential_id, Credential.counter < new_counter)
                .values(counter=new_counter)
                .execution_options(synchronize_session=False)
            )
            advanced = result.rowcount == 1
        if not advanced:
            log_security_event("counter_rollback", False, credential_id=credential_id, new_counter=new_counter)
        return advanced
