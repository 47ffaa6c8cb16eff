from typing import Any, Dict, Optional, Union

import pydantic
from fastapi import APIRouter, Body, Cookie, Depends, Response
from fastapi.responses import JSONResponse

from ..ceremonies import CeremonyOrchestrator
from ..cookies import SESSION_COOKIE, clear_session_cookie, set_session_cookie
from ..deps import (
    admit_caller,
    current_user_id,
    get_orchestrator,
    get_session_issuer,
    get_user_directory,
    require_same_origin,
)
from ..errors import ValidationError
from ..schemas import AuthenticationAssertion, RegistrationAttestation, UsernameIn, parse_ceremony_payload
from ..sessions import SessionIssuer
from ..users import UserDirectory

router = APIRouter(prefix="/api/v1", tags=["webauthn"])

def ceremony_payload(default_kind: str):
    """Body dependency: the finish payload union, with ``kind`` defaulting to the route's."""
    def parse(body: Dict[str, Any] = Body(...)):
        try:
            return parse_ceremony_payload(body, default_kind)
        except pydantic.ValidationError as exc:
            raise ValidationError("malformed ceremony payload") from exc
    return parse

# ---------- Registration ----------
@router.post("/register/start", dependencies=[Depends(require_same_origin), Depends(admit_caller)])
def register_start(body: UsernameIn, orchestrator: CeremonyOrchestrator = Depends(get_orchestrator)):
    started = orchestrator.register_start(body.username)
    # options are already plain JSON data; correlationId must be echoed on finish
    return JSONResponse(started.as_response())

@router.post("/register/finish", dependencies=[Depends(require_same_origin)])
def register_finish(
    response: Response,
    payload: Union[RegistrationAttestation, AuthenticationAssertion] = Depends(ceremony_payload("registration")),
    orchestrator: CeremonyOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.register_finish(payload)
    set_session_cookie(response, result.session)
    return {"status": "ok"}

# ---------- Authentication ----------
@router.post("/login/start", dependencies=[Depends(require_same_origin), Depends(admit_caller)])
def login_start(body: UsernameIn, orchestrator: CeremonyOrchestrator = Depends(get_orchestrator)):
    started = orchestrator.login_start(body.username)
    return JSONResponse(started.as_response())

@router.post("/login/finish", dependencies=[Depends(require_same_origin)])
def login_finish(
    response: Response,
    payload: Union[RegistrationAttestation, AuthenticationAssertion] = Depends(ceremony_payload("authentication")),
    orchestrator: CeremonyOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.login_finish(payload)
    set_session_cookie(response, result.session)
    return {"status": "ok"}

# ---------- Session ----------
@router.get("/session")
def session_status(
    user_id: str = Depends(current_user_id),
    users: UserDirectory = Depends(get_user_directory),
):
    user = users.get(user_id)
    return {"authenticated": True, "userId": user_id, "username": user.username if user else None}

@router.post("/logout", dependencies=[Depends(require_same_origin)])
def logout(
    response: Response,
    session: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    issuer.revoke(session)
    clear_session_cookie(response)
    return {"status": "ok"}
