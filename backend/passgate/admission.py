from typing import Protocol
from redis import Redis, RedisError
from .errors import InternalError
from .logs import log_security_event

def _key(prefix: str, caller: str) -> str:
    return f"{prefix}:{caller}"

class AdmissionControl(Protocol):
    def admit(self, caller: str) -> bool: ...

class AllowAll:
    def admit(self, caller: str) -> bool:
        return True

class RedisAdmissionControl:
    """Fixed-window request counter per caller, kept in Redis.

    The first request in a window creates the key with a TTL of one window;
    later requests only increment it, so the window does not slide.
    """

    def __init__(self, redis: Redis, limit: int = 10, window_seconds: int = 60, prefix: str = "admission"):
        self.redis = redis
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisAdmissionControl":
        return cls(Redis.from_url(url), **kwargs)

    def admit(self, caller: str) -> bool:
        key = _key(self.prefix, caller)
        pipe = self.redis.pipeline()
        pipe.incr(key)
        # EXPIRE NX needs Redis 7+
        pipe.expire(key, self.window_seconds, nx=True)
        try:
            count, _ = pipe.execute()
        except RedisError as exc:
            raise InternalError("admission store unavailable") from exc
        if int(count) > self.limit:
            log_security_event("admission_denied", False, caller=caller, count=count)
            return False
        return True
