"""Registration and login ceremonies.

Each ceremony runs in two independent calls::

    start  -> CHALLENGED   (options + correlation id handed to the client)
    finish -> FINALIZED    (session issued)
           -> FAILED       (AuthError)

Nothing survives in memory between the two calls; the challenge ledger is
the only carrier of ceremony state. ``finish`` consumes the challenge before
anything else, so a correlation id can be finished at most once whatever
the outcome.

Every failure raises ``AuthError``. The reason it carries is for logs; the
HTTP layer reports all of them with one generic message.
"""

import uuid
from dataclasses import dataclass
from typing import NoReturn

from .challenges import ChallengeLedger, ChallengeRecord
from .credentials import CredentialVault
from .errors import AuthError, ConflictError, InternalError, ValidationError
from .logs import get_logger, log_security_event
from .schemas import AuthenticationAssertion, RegistrationAttestation
from .sessions import IssuedSession, SessionIssuer
from .users import UserDirectory, validate_username
from .webauthn import AUTHENTICATION_POLICY, REGISTRATION_POLICY, AttestationVerifier, VerificationResult

logger = get_logger(__name__)


@dataclass(frozen=True)
class CeremonyStart:
    options: dict
    correlation_id: str

    def as_response(self) -> dict:
        return {**self.options, "correlationId": self.correlation_id}


@dataclass(frozen=True)
class CeremonyResult:
    user_id: str
    session: IssuedSession


class CeremonyOrchestrator:
    def __init__(
        self,
        *,
        users: UserDirectory,
        challenges: ChallengeLedger,
        credentials: CredentialVault,
        sessions: SessionIssuer,
        verifier: AttestationVerifier,
        rp_id: str,
        origin: str,
    ):
        self.users = users
        self.challenges = challenges
        self.credentials = credentials
        self.sessions = sessions
        self.verifier = verifier
        self.rp_id = rp_id
        self.origin = origin

    # ---------- Registration ----------
    def register_start(self, username: str) -> CeremonyStart:
        validate_username(username)
        # An existing username gets another authenticator without proving
        # control of the account first (multi-device enrollment).
        user = self.users.resolve_or_create(username)
        existing = self.credentials.list_for_user(user.id)
        opts = self.verifier.registration_options(self.rp_id, user, REGISTRATION_POLICY, exclude=existing)
        correlation_id = self._new_challenge(opts.challenge, user.id)
        log_security_event("registration_started", True, user_id=user.id, correlation_id=correlation_id)
        return CeremonyStart(options=opts.options, correlation_id=correlation_id)

    def register_finish(self, payload: RegistrationAttestation) -> CeremonyResult:
        if not isinstance(payload, RegistrationAttestation):
            raise ValidationError("expected a registration attestation")
        stored = self._take_challenge(payload.correlation_id, "registration")
        if stored.user_id is None:
            self._fail("registration", "challenge not bound to a user", correlation_id=stored.correlation_id)

        result = self._verify(
            self.verifier.verify_registration,
            payload.credential,
            expected_challenge=stored.challenge,
            expected_origin=self.origin,
            expected_rp_id=self.rp_id,
            require_user_verification=True,
        )
        if not result.verified or not result.credential_id or result.public_key is None:
            self._fail("registration", f"verification failed: {result.reason}", user_id=stored.user_id)

        try:
            self.credentials.register(stored.user_id, result.credential_id, result.public_key)
        except ConflictError:
            self._fail("registration", "credential already registered", user_id=stored.user_id)

        session = self.sessions.issue(stored.user_id)
        log_security_event("registration_finished", True, user_id=stored.user_id)
        return CeremonyResult(user_id=stored.user_id, session=session)

    # ---------- Login ----------
    def login_start(self, username: str) -> CeremonyStart:
        validate_username(username)
        user = self.users.get_by_username(username)
        if user is None:
            self._fail("login", "unknown username")
        allowed = self.credentials.list_for_user(user.id)
        opts = self.verifier.authentication_options(self.rp_id, allowed, AUTHENTICATION_POLICY)
        correlation_id = self._new_challenge(opts.challenge, None)
        log_security_event("login_started", True, user_id=user.id, correlation_id=correlation_id)
        return CeremonyStart(options=opts.options, correlation_id=correlation_id)

    def login_finish(self, payload: AuthenticationAssertion) -> CeremonyResult:
        if not isinstance(payload, AuthenticationAssertion):
            raise ValidationError("expected an authentication assertion")
        stored = self._take_challenge(payload.correlation_id, "login")

        credential = self.credentials.lookup(payload.credential_id)
        if credential is None:
            self._fail("login", "unknown credential", credential_id=payload.credential_id)

        result = self._verify(
            self.verifier.verify_authentication,
            payload.credential,
            expected_challenge=stored.challenge,
            expected_origin=self.origin,
            expected_rp_id=self.rp_id,
            credential=credential,
            require_user_verification=True,
        )
        if not result.verified or result.new_counter is None:
            self._fail("login", f"verification failed: {result.reason}", credential_id=credential.id)

        # Final gate: a good signature with a stale counter is a cloned key.
        if not self.credentials.advance_counter(credential.id, result.new_counter):
            self._fail(
                "login",
                "signature counter did not advance",
                credential_id=credential.id,
                stored_counter=credential.counter,
                new_counter=result.new_counter,
            )

        session = self.sessions.issue(credential.user_id)
        log_security_event("login_finished", True, user_id=credential.user_id)
        return CeremonyResult(user_id=credential.user_id, session=session)

    # ---------- Helpers ----------
    def _new_challenge(self, challenge: str, user_id: str | None) -> str:
        correlation_id = uuid.uuid4().hex
        self.challenges.store(correlation_id, challenge, user_id)
        return correlation_id

    def _take_challenge(self, correlation_id: str, ceremony: str) -> ChallengeRecord:
        stored = self.challenges.take(correlation_id)
        if stored is None:
            self._fail(ceremony, "unknown ceremony", correlation_id=correlation_id)
        return stored

    def _verify(self, verify, *args, **kwargs) -> VerificationResult:
        try:
            return verify(*args, **kwargs)
        except Exception as exc:
            logger.exception("attestation verifier failed")
            raise InternalError("attestation verifier failed") from exc

    def _fail(self, ceremony: str, reason: str, **details) -> NoReturn:
        log_security_event(f"{ceremony}_failed", False, reason=reason, **details)
        raise AuthError(reason)
