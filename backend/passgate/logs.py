"""Logging setup shared by every passgate module.

Use ``get_logger(__name__)`` for ordinary diagnostics and
``log_security_event`` for anything that feeds a trust decision (failed
verifications, counter rollbacks, rejected origins). Security events go to
the ``passgate.security`` logger so they can be routed separately.
"""

import logging
import sys
import threading

from .config import settings

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False
_lock = threading.Lock()


def _configure_root() -> None:
    global _configured
    with _lock:
        if _configured:
            return
        root = logging.getLogger("passgate")
        root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
        if not any(getattr(h, "_passgate", False) for h in root.handlers):
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(_FORMAT))
            handler._passgate = True
            root.addHandler(handler)
        _configured = True


def get_logger(name: str = "passgate") -> logging.Logger:
    """Return a logger below the ``passgate`` hierarchy with the console handler installed."""
    _configure_root()
    if not name.startswith("passgate"):
        name = f"passgate.{name}"
    return logging.getLogger(name)


def log_security_event(event: str, success: bool, **details) -> None:
    logger = get_logger("passgate.security")
    rendered = " ".join(f"{k}={v!r}" for k, v in sorted(details.items()) if v is not None)
    level = logging.INFO if success else logging.WARNING
    logger.log(level, "event=%s success=%s %s", event, success, rendered)
