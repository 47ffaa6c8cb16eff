"""Out-of-band cleanup of expired challenges and sessions.

Reads already ignore expired rows, so this only reclaims space. It is safe
to run at any time, including alongside live ceremonies.
"""

import argparse

from .challenges import ChallengeLedger
from .config import settings
from .logs import get_logger
from .sessions import SessionIssuer

logger = get_logger(__name__)


def sweep_expired(challenges: ChallengeLedger | None = None, sessions: SessionIssuer | None = None) -> dict:
    challenges = challenges or ChallengeLedger()
    sessions = sessions or SessionIssuer(settings.SESSION_SECRET)
    counts = {"challenges": challenges.sweep(), "sessions": sessions.sweep()}
    logger.info("sweep removed %(challenges)d challenges, %(sessions)d sessions", counts)
    return counts


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="passgate-sweep", description=__doc__.splitlines()[0])
    parser.parse_args(argv)
    sweep_expired()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
