import time
from typing import Optional

import jwt

ALGO = "HS256"

def seal_session(sid: str, secret: str, expires_at: int) -> str:
    """Wrap a session id in a signed token so tampering fails before any lookup."""
    now = int(time.time())
    payload = {"sid": sid, "iat": now, "exp": expires_at}
    return jwt.encode(payload, secret, algorithm=ALGO)

def open_session(token: str, secret: str, verify_exp: bool = True) -> Optional[str]:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[ALGO],
            options={"verify_exp": verify_exp, "require": ["sid", "exp"]},
        )
    except jwt.InvalidTokenError:
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) and sid else None

def origin_matches(origin: Optional[str], referer: Optional[str], expected_origin: str) -> bool:
    """CSRF check: the request must declare an origin and it must be ours."""
    if not origin and not referer:
        return False
    if origin and origin != expected_origin:
        return False
    if referer and referer != expected_origin and not referer.startswith(expected_origin.rstrip("/") + "/"):
        return False
    return True
