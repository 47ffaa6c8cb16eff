from fastapi import Response
from .sessions import IssuedSession, SESSION_TTL_SECONDS

SESSION_COOKIE = "session"

def set_session_cookie(response: Response, session: IssuedSession) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session.token,
        max_age=session.max_age or SESSION_TTL_SECONDS,
        path="/",
        secure=True,
        httponly=True,
        samesite="strict",
    )

def clear_session_cookie(response: Response) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        "",
        max_age=0,
        path="/",
        secure=True,
        httponly=True,
        samesite="strict",
    )
