"""Delete expired refresh-token records from the session store.

Intended to run from cron or a scheduled job::

    python scripts/purge_expired_sessions.py
"""

from __future__ import annotations

import argparse
import logging

from psycopg_pool import ConnectionPool

from session_service.config import get_settings
from session_service.domain.service import SessionManager
from session_service.logging_setup import configure_logging
from session_service.repository import AccountRepository, SessionRepository

logger = logging.getLogger("session_service.scripts.purge")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", default=None, help="override POSTGRES_URL")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)
    with ConnectionPool(args.database_url or settings.database_url) as pool:
        manager = SessionManager(AccountRepository(pool), SessionRepository(pool), settings=settings)
        purged = manager.purge_expired_sessions()
    logger.info("purge complete removed=%d", purged)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
