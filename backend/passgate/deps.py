"""FastAPI dependencies: component wiring and the request guards.

Components are built once per process from ``settings``; tests swap them
through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Cookie, Depends, Request

from .admission import AdmissionControl, AllowAll, RedisAdmissionControl
from .ceremonies import CeremonyOrchestrator
from .challenges import ChallengeLedger
from .config import settings
from .cookies import SESSION_COOKIE
from .credentials import CredentialVault
from .errors import AuthError, UnauthorizedError
from .logs import log_security_event
from .security import origin_matches
from .sessions import SessionIssuer
from .users import UserDirectory
from .webauthn import Fido2Verifier


@lru_cache
def get_user_directory() -> UserDirectory:
    return UserDirectory()


@lru_cache
def get_session_issuer() -> SessionIssuer:
    return SessionIssuer(settings.SESSION_SECRET)


@lru_cache
def get_orchestrator() -> CeremonyOrchestrator:
    return CeremonyOrchestrator(
        users=get_user_directory(),
        challenges=ChallengeLedger(),
        credentials=CredentialVault(),
        sessions=get_session_issuer(),
        verifier=Fido2Verifier(settings.RP_NAME),
        rp_id=settings.RP_ID,
        origin=settings.ORIGIN,
    )


@lru_cache
def get_admission() -> AdmissionControl:
    if not settings.ADMISSION_ENABLED:
        return AllowAll()
    return RedisAdmissionControl.from_url(
        settings.REDIS_URL, limit=settings.RATE_LIMIT, window_seconds=settings.RATE_LIMIT_WINDOW
    )


def get_expected_origin() -> str:
    return settings.ORIGIN


def caller_identity(request: Request) -> str:
    # only a header set by our own proxy may name the caller
    if settings.TRUSTED_PROXY_HEADER:
        forwarded = request.headers.get(settings.TRUSTED_PROXY_HEADER)
        if forwarded:
            return forwarded.strip()
    return request.client.host if request.client else "unknown"


def require_same_origin(request: Request, expected_origin: str = Depends(get_expected_origin)) -> None:
    origin = request.headers.get("origin")
    referer = request.headers.get("referer")
    if not origin_matches(origin, referer, expected_origin):
        log_security_event("origin_rejected", False, path=request.url.path, origin=origin, referer=referer)
        raise AuthError("origin mismatch")


def admit_caller(request: Request, admission: AdmissionControl = Depends(get_admission)) -> None:
    if not admission.admit(caller_identity(request)):
        raise AuthError("rate limited")


def current_user_id(
    session: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    issuer: SessionIssuer = Depends(get_session_issuer),
) -> str:
    user_id = issuer.validate(session)
    if user_id is None:
        raise UnauthorizedError("missing or expired session")
    return user_id
